"""
Connector contract.

Every node executor satisfies ``execute(payload, config) -> payload``.
The engine accepts coroutine functions, objects with an async or sync
``execute`` method, and plain callables. Sync work is pushed to a
worker thread so a blocking connector never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from docflow.exceptions import NodeTimeout, TransientConnectorError


@runtime_checkable
class Connector(Protocol):
    """Anything with ``execute(payload, config)``; may be sync or async."""

    def execute(self, payload: Any, config: Mapping[str, Any]) -> Any: ...


ConnectorFunction = Callable[[Any, Mapping[str, Any]], Union[Any, Awaitable[Any]]]
Executor = Union[Connector, ConnectorFunction]


class RetryPolicy(BaseModel):
    """Per-node-type retry budget with exponential backoff.

    ``max_attempts`` counts the first call: 1 means no retry.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=1, ge=1)
    backoff_seconds: float = Field(default=0.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_backoff_seconds: float = Field(default=30.0, ge=0)
    retry_on_timeout: bool = True

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """``attempt`` is the 1-based number of the call that just failed."""
        if attempt >= self.max_attempts:
            return False
        if isinstance(exc, TransientConnectorError):
            return True
        return isinstance(exc, NodeTimeout) and self.retry_on_timeout

    def delay_for(self, attempt: int) -> float:
        delay = self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)


NO_RETRY = RetryPolicy()


def resolve_callable(executor: Executor) -> Callable[..., Any]:
    """Return the function to call for ``executor``."""
    method = getattr(executor, "execute", None)
    if method is not None and callable(method):
        return method
    if callable(executor):
        return executor
    raise TypeError(f"{executor!r} is not a connector (no execute() and not callable)")


def is_async_callable(fn: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


async def call_connector(
    executor: Executor,
    payload: Any,
    config: Mapping[str, Any],
) -> Any:
    """Invoke a connector once, whatever its calling convention."""
    fn = resolve_callable(executor)
    if is_async_callable(fn):
        return await fn(payload, config)

    result = await asyncio.to_thread(fn, payload, config)
    if inspect.isawaitable(result):
        result = await result
    return result


async def call_service(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a backend service method that may be sync or async."""
    if is_async_callable(fn):
        return await fn(*args, **kwargs)
    result = await asyncio.to_thread(fn, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
