"""Request/response correlation for compositor calls.

Each outbound call gets a fresh correlation id from a monotonic counter. The
receive path resolves the matching PendingCall when its response arrives;
transport closure fails every outstanding call. Every PendingCall resolves
exactly once.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .errors import (
    CallTimeoutError,
    ClientMisuseError,
    TransportError,
    rejection_from_response,
)
from .state import ClientStats

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class PendingCall:
    """An outbound call waiting for its single resolution."""

    request_id: int
    method: str
    params: Dict[str, Any]
    future: asyncio.Future
    sent_at: float = field(default=0.0)


class RequestCorrelator:
    """Tracks outstanding calls by correlation id."""

    def __init__(self, send: SendFunc, stats: Optional[ClientStats] = None):
        """Initialize correlator.

        Args:
            send: Coroutine function writing one message to the transport
            stats: Session statistics to update
        """
        self._send = send
        self.stats = stats or ClientStats()
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingCall] = {}
        # Ids of calls whose caller gave up; reserved until the late response shows up
        self._abandoned: Dict[int, str] = {}
        self._closed_reason: Optional[TransportError] = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def reserved_ids(self) -> Set[int]:
        return set(self._pending) | set(self._abandoned)

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    async def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and wait for its response.

        Args:
            method: Compositor method name
            params: Method parameters
            timeout: Deadline in seconds (None waits until response or disconnect)

        Returns:
            The response result

        Raises:
            CompositorRejection: If the compositor returned an error
            CallTimeoutError: If the deadline passed first
            TransportError: If the connection is or becomes closed
        """
        if self._closed_reason is not None:
            raise self._closed_reason.clone()
        if timeout is not None and timeout <= 0:
            raise ClientMisuseError(f"Timeout must be positive, got {timeout}")

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        params = params or {}
        pending = PendingCall(
            request_id=request_id,
            method=method,
            params=params,
            future=loop.create_future(),
            sent_at=loop.time(),
        )
        self._pending[request_id] = pending

        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        }

        try:
            await self._send(request)
        except TransportError:
            self._fail(pending)
            raise
        except (TypeError, ValueError) as e:
            self._fail(pending)
            raise ClientMisuseError(
                f"Parameters for '{method}' are not serializable: {e}",
                context={"method": method},
            ) from e
        except BaseException:
            self._fail(pending)
            raise

        self.stats.increment("calls_sent")
        logger.debug(f"Sent request {request_id}: {method}")

        try:
            if timeout is None:
                return await asyncio.shield(pending.future)
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout=timeout)
        except asyncio.TimeoutError:
            self._abandon(pending)
            self.stats.increment("calls_timed_out")
            logger.warning(f"Request {request_id} ({method}) timed out after {timeout}s")
            raise CallTimeoutError(method, timeout, request_id)
        except asyncio.CancelledError:
            self._abandon(pending)
            self.stats.increment("calls_cancelled")
            raise

    def resolve(
        self,
        request_id: Any,
        result: Any = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Resolve the PendingCall for a response.

        Unknown, duplicate and late responses are no-ops.

        Args:
            request_id: Correlation id carried by the response
            result: Response result
            error: JSON-RPC error object, if the compositor rejected the call

        Returns:
            True if a PendingCall was resolved
        """
        # JSON true/false decode to bool, which is an int subclass
        valid_id = isinstance(request_id, int) and not isinstance(request_id, bool)
        pending = self._pending.pop(request_id, None) if valid_id else None

        if pending is None:
            method = self._abandoned.pop(request_id, None) if valid_id else None
            if method is not None:
                self.stats.increment("late_responses_discarded")
                logger.debug(f"Discarded late response {request_id} ({method})")
            else:
                self.stats.increment("unknown_responses_ignored")
                logger.debug(f"Ignored response for unknown request id {request_id!r}")
            return False

        if pending.future.done():
            return False

        if error is not None:
            pending.future.set_exception(rejection_from_response(pending.method, error))
            self.stats.increment("calls_rejected")
            logger.debug(f"Request {request_id} ({pending.method}) rejected: {error}")
        else:
            pending.future.set_result(result)
            self.stats.increment("calls_succeeded")

        return True

    def cancel_all(self, reason: TransportError) -> int:
        """Fail every outstanding call with a disconnect error.

        Later calls fail immediately with the same error.

        Args:
            reason: The transport error that ended the connection

        Returns:
            Number of calls failed
        """
        if self._closed_reason is None:
            self._closed_reason = reason

        pending, self._pending = self._pending, {}
        self._abandoned.clear()

        for call in pending.values():
            if not call.future.done():
                call.future.set_exception(reason.clone())
                self.stats.increment("calls_failed_disconnect")

        if pending:
            logger.warning(f"Cancelled {len(pending)} pending call(s): {reason.message}")
        return len(pending)

    def _abandon(self, pending: PendingCall) -> None:
        if self._pending.pop(pending.request_id, None) is not None:
            self._abandoned[pending.request_id] = pending.method
        if not pending.future.done():
            pending.future.cancel()

    def _fail(self, pending: PendingCall) -> None:
        # The send error is raised to the caller directly
        self._pending.pop(pending.request_id, None)
        if not pending.future.done():
            pending.future.cancel()
        elif not pending.future.cancelled():
            pending.future.exception()
