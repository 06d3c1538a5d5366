"""Shared plumbing for the API sections."""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..client import PinnacleClient
from ..errors import ClientMisuseError, ErrorCode, misuse_from_validation
from ..models import Event
from ..multiplexer import Subscription, is_async_handler

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@functools.lru_cache(maxsize=None)
def _adapter(annotation: Any) -> TypeAdapter:
    return TypeAdapter(annotation)


def validate_model(operation: str, model: Type[ModelT], **values: Any) -> ModelT:
    """Build a request model, raising ClientMisuseError on invalid arguments."""
    try:
        return model(**values)
    except ValidationError as e:
        raise misuse_from_validation(operation, e) from e


def invalid_argument(operation: str, field: str, value: Any, reason: str) -> ClientMisuseError:
    return ClientMisuseError(
        f"Invalid argument '{field}' for {operation}: {reason}",
        context={"operation": operation, "field": field, "value": repr(value)},
    )


def validate_value(operation: str, field: str, annotation: Any, value: Any) -> Any:
    """Validate a single argument against a type annotation."""
    try:
        return _adapter(annotation).validate_python(value)
    except ValidationError as e:
        messages = "; ".join(item.get("msg", "") for item in e.errors())
        raise invalid_argument(operation, field, value, messages) from e


def require_callable(operation: str, field: str, value: Any) -> None:
    if value is not None and not callable(value):
        raise invalid_argument(
            operation, field, value, f"must be callable, got {type(value).__name__}"
        )


async def invoke(client: PinnacleClient, fn: Callable, *args: Any) -> Any:
    """Run a user callback: coroutine functions are awaited, plain callables
    run on the client's handler pool."""
    if is_async_handler(fn):
        return await fn(*args)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(client.executor, functools.partial(fn, *args))
    if asyncio.iscoroutine(result):
        result = await result
    return result


def adapt_handler(
    client: PinnacleClient,
    fn: Callable,
    convert: Callable[[Event], Tuple[Any, ...]],
    accept: Optional[Callable[[Event], bool]] = None,
) -> Callable:
    """Wrap a user callback as a multiplexer handler.

    Args:
        client: Client whose pool runs plain callables
        fn: User callback
        convert: Turns an event into the callback's positional arguments
        accept: Optional predicate; events it rejects are skipped
    """
    async def handler(event: Event) -> None:
        if accept is not None and not accept(event):
            return
        await invoke(client, fn, *convert(event))

    handler.__qualname__ = f"handler({getattr(fn, '__qualname__', repr(fn))})"
    return handler


class SignalHandle:
    """Handle for a connected signal; disconnect() stops delivery."""

    def __init__(self, section: "ApiSection", category: str, subscription: Subscription):
        self._section = section
        self.category = category
        self.subscription = subscription

    @property
    def connected(self) -> bool:
        return self.subscription.active

    async def disconnect(self) -> None:
        """Stop delivery to this handler. Idempotent."""
        if not self._section.client.unsubscribe(self.subscription):
            return
        if self._section.client.closed:
            return
        await self._section.call(
            "signal.disconnect",
            {"category": self.category, "subscription_id": self.subscription.id},
        )

    def __repr__(self) -> str:
        return f"SignalHandle({self.category!r}, connected={self.connected})"


class ApiSection:
    """Base class of the per-concept API objects."""

    #: Signals this section accepts in connect_signal()
    signals: Sequence[str] = ()

    def __init__(self, client: PinnacleClient):
        self.client = client

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.client.call(method, params)

    async def subscribe_acked(
        self,
        category: str,
        handler: Callable,
        event_filter: Optional[str],
        ack_method: str,
        ack_params: Dict[str, Any],
    ) -> Subscription:
        """Register a subscription, then acknowledge it with the compositor.

        The subscription is rolled back if the acknowledgement fails, so a
        handler never outlives a rejected registration.
        """
        subscription = self.client.subscribe(category, handler, event_filter)
        try:
            await self.call(ack_method, {**ack_params, "subscription_id": subscription.id})
        except BaseException:
            self.client.unsubscribe(subscription)
            raise
        return subscription

    def convert_signal(self, category: str, event: Event) -> Tuple[Any, ...]:
        """Turn a signal event into handler arguments. Sections override this."""
        return (event.payload,)

    async def connect_signal(self, signal: Any, handler: Callable) -> SignalHandle:
        """Connect a handler to one of this section's signals.

        Args:
            signal: Signal category (EventCategory member or its string value)
            handler: Callback receiving the converted signal arguments

        Returns:
            SignalHandle for disconnect()
        """
        category = getattr(signal, "value", signal)
        if category not in self.signals:
            raise ClientMisuseError(
                f"Unknown signal '{category}' for {type(self).__name__}",
                code=ErrorCode.INVALID_ARGUMENT,
                suggestion=f"Use one of: {', '.join(sorted(self.signals))}",
            )
        require_callable("connect_signal", "handler", handler)

        wrapped = adapt_handler(
            self.client, handler, functools.partial(self.convert_signal, category)
        )
        subscription = await self.subscribe_acked(
            category, wrapped, None, "signal.connect", {"category": category}
        )
        logger.debug(f"Connected signal {category} (subscription {subscription.id})")
        return SignalHandle(self, category, subscription)
