from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from calonik.auth.session import RECOVERED_TOKEN_KEY, ClientStore
from calonik.auth.util import exact_origin
from calonik.completion.messages import ErrorMessage, SuccessMessage, parse_handshake_message
from calonik.completion.scheduler import Scheduler
from calonik.completion.timing import HandshakeTiming

logger = logging.getLogger(__name__)

POPUP_POLL_MS = 1000


class PopupHandle(Protocol):
    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        ...


class ReceiverState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class HandshakeReceiver:
    """
    Opener-side end of the completion handshake.

    Only messages from the exact expected origin that validate as a handshake
    message are considered, and only the first one counts: the completion page
    broadcasts success several times, so every later delivery is a no-op.
    """

    def __init__(
        self,
        expected_origin: str,
        *,
        on_success: Callable[[SuccessMessage], Any],
        on_error: Callable[[ErrorMessage], Any],
        on_abandon: Optional[Callable[[ReceiverState], Any]] = None,
        store: Optional[ClientStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        origin = exact_origin(expected_origin)
        if origin is None:
            raise ValueError(f"expected_origin must be an exact http(s) origin, got {expected_origin!r}")
        self._origin = origin
        self._on_success = on_success
        self._on_error = on_error
        self._on_abandon = on_abandon
        self._store = store
        self._clock = clock
        self.state = ReceiverState.PENDING
        if self._store is not None:
            # Only a token written after this login started may be recovered.
            self._store.delete(RECOVERED_TOKEN_KEY)

    @property
    def pending(self) -> bool:
        return self.state is ReceiverState.PENDING

    def handle(self, origin: str, data: Any) -> bool:
        """Process one delivered message. Returns True if it changed the receiver's state."""
        if origin != self._origin:
            logger.debug("Ignoring handshake message from unexpected origin %s", origin)
            return False
        message = parse_handshake_message(data)
        if message is None:
            return False
        if not self.pending:
            logger.debug("Ignoring repeated %s (state=%s)", message.type, self.state.value)
            return False

        if isinstance(message, SuccessMessage):
            self._succeed(message)
        else:
            self.state = ReceiverState.FAILED
            logger.info("Authentication failed in popup: %s", message.error)
            self._on_error(message)
        return True

    def popup_closed(self) -> ReceiverState:
        """
        The popup is gone. If no message arrived, fall back to the token the
        completion page left in the shared store.
        """
        if not self.pending:
            return self.state
        token = self._store.get(RECOVERED_TOKEN_KEY) if self._store is not None else None
        if token:
            logger.info("Recovered authentication token after popup closed without a message")
            self._succeed(SuccessMessage(token=token, timestamp=int(self._clock() * 1000)))
        else:
            self._abandon(ReceiverState.ABANDONED)
        return self.state

    def expire(self) -> ReceiverState:
        if self.pending:
            self._abandon(ReceiverState.EXPIRED)
        return self.state

    def watch(self, popup: PopupHandle, scheduler: Scheduler, *, timing: Optional[HandshakeTiming] = None) -> None:
        """Poll the popup until it closes, closing it ourselves once the timeout passes."""
        t = timing or HandshakeTiming()
        deadline = self._clock() + t.opener_timeout_ms / 1000.0

        def _poll() -> None:
            if not self.pending:
                return
            if popup.closed:
                self.popup_closed()
                return
            if self._clock() >= deadline:
                popup.close()
                self.expire()
                return
            scheduler.call_later(POPUP_POLL_MS / 1000.0, _poll)

        scheduler.call_later(POPUP_POLL_MS / 1000.0, _poll)

    def _succeed(self, message: SuccessMessage) -> None:
        self.state = ReceiverState.SUCCEEDED
        if self._store is not None:
            # Consumed; a later popup must not pick up this token again.
            self._store.delete(RECOVERED_TOKEN_KEY)
        self._on_success(message)

    def _abandon(self, state: ReceiverState) -> None:
        self.state = state
        logger.info("Authentication popup %s without a result", state.value)
        if self._on_abandon is not None:
            self._on_abandon(state)
