"""Shared pytest fixtures."""

from __future__ import annotations

import inspect
import logging
from typing import Any

import pytest

from contextkit.bridge import BridgeClient, WriteQueue


class FakeBackend:
    """In-memory transport: records every call and answers from ``responses``.

    A response may be a plain value, an exception instance (raised), or a
    callable receiving the call's keyword args (its result is awaited if needed).
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses: dict[str, Any] = dict(responses or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, method: str, args: dict[str, Any]) -> Any:
        self.calls.append((method, args))
        value = self.responses.get(method)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            value = value(**args)
            if inspect.isawaitable(value):
                value = await value
        return value

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [args for m, args in self.calls if m == method]


@pytest.fixture(autouse=True)
def _restore_contextkit_logger():
    """setup_logging() detaches the package logger from root; undo that after each test."""
    logger = logging.getLogger("contextkit")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def bridge(backend: FakeBackend) -> BridgeClient:
    return BridgeClient(backend)


@pytest.fixture
def writes(bridge: BridgeClient) -> WriteQueue:
    return WriteQueue(bridge)
