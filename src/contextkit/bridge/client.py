"""RPC bridge client: opaque ``method + args -> result`` calls to the backend.

The backend (document store, embeddings, conversation analysis) is reached only
through a transport coroutine. Every failure surfaces as RpcError so callers have
a single exception type to catch and degrade on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# (method, args) -> JSON-serialisable result
Transport = Callable[[str, dict[str, Any]], Awaitable[Any]]


class RpcError(RuntimeError):
    """Raised when a backend call fails, times out, or the transport raises."""

    def __init__(self, method: str, cause: BaseException | str) -> None:
        self.method = method
        self.cause = cause
        super().__init__(f"RPC '{method}' failed: {cause}")


class BridgeClient:
    """Wraps a transport with error normalisation and an optional per-call timeout."""

    def __init__(self, transport: Transport, timeout: float | None = None) -> None:
        """
        Args:
            transport: Coroutine function performing the actual call.
            timeout: Seconds before a call is abandoned. None waits indefinitely.
        """
        self._transport = transport
        self.timeout = timeout

    async def call(self, method: str, **args: Any) -> Any:
        """Invoke *method* on the backend and return its result.

        Raises:
            RpcError: On transport failure or timeout.
        """
        logger.debug("rpc → %s %s", method, sorted(args))
        try:
            if self.timeout is None:
                return await self._transport(method, args)
            return await asyncio.wait_for(self._transport(method, args), self.timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            raise RpcError(method, f"timed out after {self.timeout}s") from exc
        except RpcError:
            raise
        except Exception as exc:
            raise RpcError(method, exc) from exc
