"""Backend RPC bridge — call client and background write queue."""

from contextkit.bridge.client import BridgeClient, RpcError, Transport
from contextkit.bridge.write_queue import WriteQueue

__all__ = [
    "BridgeClient",
    "RpcError",
    "Transport",
    "WriteQueue",
]
