from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Union
from urllib.parse import parse_qs, urlsplit

from calonik.auth.errors import HandshakeTimeout
from calonik.auth.session import RECOVERED_TOKEN_KEY, ClientStore
from calonik.auth.util import exact_origin, with_query
from calonik.completion.messages import ErrorMessage, SuccessMessage
from calonik.completion.scheduler import Scheduler
from calonik.completion.timing import HandshakeTiming

logger = logging.getLogger(__name__)

RELOAD_COUNT_KEY = "calonik_handshake_reloads"


class OpenerHandle(Protocol):
    """The window that opened the completion page."""

    @property
    def closed(self) -> bool:
        ...

    def post_message(self, message: Dict[str, Any], target_origin: str) -> None:
        ...


class CompletionContext(Protocol):
    """The completion page's own browsing context."""

    @property
    def url(self) -> str:
        ...

    @property
    def opener(self) -> Optional[OpenerHandle]:
        ...

    @property
    def storage(self) -> ClientStore:
        ...

    def close(self) -> None:
        ...

    def navigate(self, path: str) -> None:
        ...

    def reload(self) -> None:
        ...


class HandshakeState(str, Enum):
    AWAITING_PARAMS = "awaiting_params"
    RESOLVED_SUCCESS = "resolved_success"
    RESOLVED_ERROR = "resolved_error"
    CLOSING = "closing"
    TIMED_OUT = "timed_out"


@dataclass
class HandshakeSession:
    state: HandshakeState = HandshakeState.AWAITING_PARAMS
    attempts_sent: int = 0
    reloads: int = 0


@dataclass(frozen=True)
class InvocationParams:
    success: bool
    email: Optional[str]
    token: Optional[str]
    error: Optional[str]

    @classmethod
    def from_url(cls, url: str) -> "InvocationParams":
        qs = parse_qs(urlsplit(url or "").query)

        def first(name: str) -> Optional[str]:
            values = qs.get(name) or []
            value = (values[0] if values else "").strip()
            return value or None

        return cls(
            success=first("success") == "true",
            email=first("email"),
            token=first("token"),
            error=first("error"),
        )


class CompletionChannel:
    """
    State machine for the page an identity provider redirects back to.

    It reports the result to its opener over an unacknowledged message channel
    (success is broadcast several times), leaves the token in its own store for
    the opener to recover if every message is lost, and then closes itself.
    Without an opener it navigates home instead.
    """

    def __init__(
        self,
        context: CompletionContext,
        scheduler: Scheduler,
        *,
        timing: Optional[HandshakeTiming] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ctx = context
        self._scheduler = scheduler
        self._timing = timing or HandshakeTiming()
        self._clock = clock
        self._torn_down = False
        self.session = HandshakeSession()

    @property
    def state(self) -> HandshakeState:
        return self.session.state

    def start(self) -> HandshakeState:
        """Parse the invocation parameters (once) and act on them."""
        try:
            self._enter(InvocationParams.from_url(self._ctx.url))
        except HandshakeTimeout as e:
            logger.warning("Completion page timed out: %s", str(e))
            self._ctx.storage.delete(RELOAD_COUNT_KEY)
            self._transition(HandshakeState.TIMED_OUT)
            self._navigate(with_query(self._timing.home_path, error="handshake_timeout"))
        except Exception:
            logger.exception("Completion page failed; falling back to home")
            self._go_home()
        return self.session.state

    def _enter(self, params: InvocationParams) -> None:
        if params.success:
            if not params.token:
                # A success marker alone cannot be delivered or recovered.
                self._resolve_error("missing_token")
                return
            self._resolve_success(params.email, params.token)
        elif params.error:
            self._resolve_error(params.error)
        else:
            self._await_params()

    def _resolve_success(self, email: Optional[str], token: str) -> None:
        self._transition(HandshakeState.RESOLVED_SUCCESS)
        self._ctx.storage.delete(RELOAD_COUNT_KEY)
        # Recovery path: survives even if every broadcast is lost.
        self._ctx.storage.set(RECOVERED_TOKEN_KEY, token)

        target = self._target_origin()
        if target is None:
            self._go_home()
            return

        message = SuccessMessage(email=email, token=token, timestamp=self._now_ms())
        for delay_ms in self._timing.broadcast_delays_ms:
            if delay_ms <= 0:
                self._broadcast(message, target)
            else:
                self._schedule(delay_ms, lambda: self._broadcast(message, target))
        self._schedule(self._timing.success_close_ms, self._close)

    def _resolve_error(self, error: str) -> None:
        self._transition(HandshakeState.RESOLVED_ERROR)
        self._ctx.storage.delete(RELOAD_COUNT_KEY)

        target = self._target_origin()
        if target is None:
            self._transition(HandshakeState.CLOSING)
            self._navigate(with_query(self._timing.home_path, error=error))
            return

        self._broadcast(ErrorMessage(error=error, timestamp=self._now_ms()), target)
        self._schedule(self._timing.error_close_ms, self._close)

    def _await_params(self) -> None:
        storage = self._ctx.storage
        try:
            reloads = int(storage.get(RELOAD_COUNT_KEY) or 0)
        except ValueError:
            reloads = 0
        self.session.reloads = reloads
        if reloads >= self._timing.max_reloads:
            raise HandshakeTimeout(reloads)

        logger.info("No authentication result yet; reloading (attempt %d/%d)", reloads + 1, self._timing.max_reloads)

        def _reload() -> None:
            storage.set(RELOAD_COUNT_KEY, str(reloads + 1))
            self._torn_down = True
            self._ctx.reload()

        self._schedule(self._timing.reload_interval_ms, _reload)

    def _target_origin(self) -> Optional[str]:
        """The exact origin to post to, or None when there is no live opener to post to."""
        opener = self._ctx.opener
        if opener is None or opener.closed:
            logger.info("No live opener; completing in this window")
            return None
        origin = exact_origin(self._ctx.url)
        if origin is None:
            logger.error("Refusing to post handshake result without an exact origin")
        return origin

    def _broadcast(self, message: Union[SuccessMessage, ErrorMessage], target_origin: str) -> None:
        if self._torn_down:
            return
        opener = self._ctx.opener
        if opener is None or opener.closed:
            logger.info("Opener went away; skipping %s broadcast", message.type)
            return
        opener.post_message(message.to_wire(), target_origin)
        self.session.attempts_sent += 1
        logger.debug("Posted %s (attempt %d)", message.type, self.session.attempts_sent)

    def _close(self) -> None:
        if self._torn_down:
            return
        self._transition(HandshakeState.CLOSING)
        self._torn_down = True
        self._ctx.close()

    def _go_home(self) -> None:
        self._transition(HandshakeState.CLOSING)
        self._navigate(self._timing.home_path)

    def _navigate(self, path: str) -> None:
        self._torn_down = True
        self._ctx.navigate(path)

    def _schedule(self, delay_ms: int, fn: Callable[[], None]) -> None:
        def _guarded() -> None:
            if self._torn_down:
                return
            try:
                fn()
            except Exception:
                logger.exception("Completion page timer failed; falling back to home")
                self._go_home()

        self._scheduler.call_later(delay_ms / 1000.0, _guarded)

    def _transition(self, state: HandshakeState) -> None:
        if state is not self.session.state:
            logger.info("Handshake %s -> %s", self.session.state.value, state.value)
            self.session.state = state

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
