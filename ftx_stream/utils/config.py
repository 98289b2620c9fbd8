"""
FTX Stream Client Configuration
"""

import os
from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Endpoint(str, Enum):
    """Exchange deployments with their websocket endpoints"""
    COM = "com"
    US = "us"

    @property
    def ws_url(self) -> str:
        return "wss://ftx.us/ws" if self is Endpoint.US else "wss://ftx.com/ws"


class FtxConfig(BaseModel):
    """FTX credentials and endpoint configuration"""
    api_key: str = Field(default="", description="FTX API key")
    secret_key: str = Field(default="", description="FTX API secret")
    subaccount: Optional[str] = Field(default=None, description="Subaccount to log in as")
    endpoint: Endpoint = Field(default=Endpoint.COM, description="ftx.com or ftx.us")

    @property
    def ws_url(self) -> str:
        return self.endpoint.ws_url

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.secret_key)


class StreamConfig(BaseModel):
    """Websocket stream and order book maintenance configuration"""
    # FTX drops connections that stay silent for more than ~15 seconds
    ping_interval: float = Field(default=15.0, description="Seconds between {'op': 'ping'} frames")
    receive_timeout: float = Field(default=30.0, description="Seconds without a frame before the connection is considered lost")
    checksum_depth: int = Field(default=100, ge=1, description="Levels per side covered by the exchange checksum")
    resync_on_checksum_mismatch: bool = Field(default=True, description="Resubscribe the book when its checksum disagrees")
    subscription_ack_window: int = Field(default=100, ge=1, description="Frames to wait for a (un)subscribe acknowledgement")

    reconnect_delay: float = Field(default=1.0, description="Initial reconnect delay in seconds")
    max_reconnect_delay: float = Field(default=60.0, description="Upper bound for the reconnect backoff")
    max_reconnect_attempts: int = Field(default=10, description="Reconnect attempts before giving up")

    fill_dedup_window: int = Field(default=1000, ge=0, description="Recent fill ids remembered for deduplication (0 disables)")


class Config:
    """Main configuration class"""

    def __init__(self):
        self.ftx = FtxConfig(
            api_key=os.getenv("FTX_API_KEY", ""),
            secret_key=os.getenv("FTX_API_SECRET", ""),
            subaccount=os.getenv("FTX_SUBACCOUNT") or None,
            endpoint=os.getenv("FTX_ENDPOINT", Endpoint.COM.value).lower()
        )
        self.stream = StreamConfig()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary"""
        return {
            "ftx": self.ftx.model_dump(exclude={"secret_key"}),
            "stream": self.stream.model_dump()
        }


# Global configuration instance
config = Config()
