from __future__ import annotations

import asyncio

import pytest
from fakes import FakeContext, FakeOpener, FakeScheduler

from calonik.auth.session import RECOVERED_TOKEN_KEY
from calonik.completion.channel import RELOAD_COUNT_KEY, CompletionChannel, HandshakeState, InvocationParams
from calonik.completion.scheduler import AsyncioScheduler
from calonik.completion.timing import HandshakeTiming

APP = "https://app.calonik.ai"
NOW = 1_700_000_000.0


def _channel(ctx: FakeContext, sched: FakeScheduler, **timing) -> CompletionChannel:
    return CompletionChannel(ctx, sched, timing=HandshakeTiming(**timing), clock=lambda: NOW)


def _success_url(token: str = "T0K") -> str:
    return f"{APP}/oauth-callback?success=true&email=a%40b.com&token={token}"


def test_invocation_params_parse() -> None:
    p = InvocationParams.from_url(_success_url())
    assert p == InvocationParams(success=True, email="a@b.com", token="T0K", error=None)
    assert InvocationParams.from_url(f"{APP}/oauth-callback?success=1").success is False
    assert InvocationParams.from_url("").error is None


def test_success_broadcasts_three_identical_messages_then_closes() -> None:
    opener = FakeOpener()
    ctx = FakeContext(url=_success_url(), opener=opener)
    sched = FakeScheduler()
    ch = _channel(ctx, sched)

    assert ch.start() is HandshakeState.RESOLVED_SUCCESS
    assert len(opener.messages) == 1

    sched.advance(99)
    assert len(opener.messages) == 1
    sched.advance(1)
    assert len(opener.messages) == 2
    sched.advance(400)
    assert len(opener.messages) == 3

    expected = {"type": "GOOGLE_AUTH_SUCCESS", "email": "a@b.com", "token": "T0K", "timestamp": int(NOW * 1000)}
    assert [m for m, _origin in opener.messages] == [expected] * 3
    assert {origin for _m, origin in opener.messages} == {APP}
    assert ch.session.attempts_sent == 3

    sched.advance(999)
    assert ctx.closed is False
    sched.advance(1)
    assert ctx.closed is True
    assert ch.state is HandshakeState.CLOSING
    assert sched.pending == 0


def test_success_leaves_token_for_recovery_and_clears_reload_counter() -> None:
    ctx = FakeContext(url=_success_url("abc"), opener=FakeOpener())
    ctx.storage.set(RELOAD_COUNT_KEY, "4")
    _channel(ctx, FakeScheduler()).start()
    assert ctx.storage.get(RECOVERED_TOKEN_KEY) == "abc"
    assert ctx.storage.get(RELOAD_COUNT_KEY) is None


def test_opener_closing_mid_broadcast_stops_further_messages() -> None:
    opener = FakeOpener()
    ctx = FakeContext(url=_success_url(), opener=opener)
    sched = FakeScheduler()
    ch = _channel(ctx, sched)
    ch.start()

    opener.closed = True
    sched.advance(2000)
    assert len(opener.messages) == 1
    assert ch.session.attempts_sent == 1
    # Still closes itself; the token stays behind for recovery.
    assert ctx.closed is True
    assert ctx.storage.get(RECOVERED_TOKEN_KEY) == "T0K"


def test_success_without_opener_navigates_home() -> None:
    ctx = FakeContext(url=_success_url())
    sched = FakeScheduler()
    ch = _channel(ctx, sched)
    ch.start()
    assert ctx.navigations == ["/"]
    assert ch.state is HandshakeState.CLOSING
    assert ctx.storage.get(RECOVERED_TOKEN_KEY) == "T0K"
    assert sched.pending == 0


def test_success_with_closed_opener_navigates_home() -> None:
    opener = FakeOpener(closed=True)
    ctx = FakeContext(url=_success_url(), opener=opener)
    _channel(ctx, FakeScheduler()).start()
    assert ctx.navigations == ["/"]
    assert opener.messages == []


def test_success_marker_without_token_is_an_error() -> None:
    opener = FakeOpener()
    ctx = FakeContext(url=f"{APP}/oauth-callback?success=true&email=a%40b.com", opener=opener)
    ch = _channel(ctx, FakeScheduler())
    assert ch.start() is HandshakeState.RESOLVED_ERROR
    assert opener.messages[0][0]["type"] == "GOOGLE_AUTH_ERROR"
    assert opener.messages[0][0]["error"] == "missing_token"
    assert ctx.storage.get(RECOVERED_TOKEN_KEY) is None


def test_error_with_opener_posts_once_and_closes_after_a_second() -> None:
    opener = FakeOpener()
    ctx = FakeContext(url=f"{APP}/oauth-callback?error=access_denied", opener=opener)
    sched = FakeScheduler()
    ch = _channel(ctx, sched)
    assert ch.start() is HandshakeState.RESOLVED_ERROR

    sched.advance(999)
    assert ctx.closed is False
    sched.advance(1)
    assert ctx.closed is True
    assert [m for m, _o in opener.messages] == [
        {"type": "GOOGLE_AUTH_ERROR", "error": "access_denied", "timestamp": int(NOW * 1000)}
    ]


def test_error_without_opener_navigates_home_with_error() -> None:
    ctx = FakeContext(url=f"{APP}/oauth-callback?error=access_denied")
    ch = _channel(ctx, FakeScheduler())
    ch.start()
    assert ctx.navigations == ["/?error=access_denied"]
    assert ch.state is HandshakeState.CLOSING


def test_missing_params_reload_after_two_seconds() -> None:
    ctx = FakeContext(url=f"{APP}/oauth-callback", opener=FakeOpener())
    sched = FakeScheduler()
    ch = _channel(ctx, sched)
    assert ch.start() is HandshakeState.AWAITING_PARAMS

    sched.advance(1999)
    assert ctx.reloads == 0
    sched.advance(1)
    assert ctx.reloads == 1
    assert ctx.storage.get(RELOAD_COUNT_KEY) == "1"
    # The old page is gone; its timers must not fire again.
    sched.advance(10_000)
    assert ctx.reloads == 1


def test_reloads_are_bounded_then_time_out() -> None:
    ctx = FakeContext(url=f"{APP}/oauth-callback", opener=FakeOpener())
    sched = FakeScheduler()

    states = []
    for _ in range(10):
        ch = _channel(ctx, sched, max_reloads=3)
        states.append(ch.start())
        if ch.state is HandshakeState.TIMED_OUT:
            break
        sched.advance(2000)

    assert ctx.reloads == 3
    assert states[-1] is HandshakeState.TIMED_OUT
    assert ctx.navigations == ["/?error=handshake_timeout"]
    assert ctx.storage.get(RELOAD_COUNT_KEY) is None


def test_garbage_reload_counter_starts_over() -> None:
    ctx = FakeContext(url=f"{APP}/oauth-callback")
    ctx.storage.set(RELOAD_COUNT_KEY, "lots")
    sched = FakeScheduler()
    ch = _channel(ctx, sched)
    ch.start()
    sched.advance(2000)
    assert ctx.storage.get(RELOAD_COUNT_KEY) == "1"


@pytest.mark.parametrize("url", ["/oauth-callback?success=true&token=T", "about:blank?success=true&token=T"])
def test_refuses_to_post_without_exact_origin(url: str) -> None:
    opener = FakeOpener()
    ctx = FakeContext(url=url, opener=opener)
    ch = _channel(ctx, FakeScheduler())
    ch.start()
    assert opener.messages == []
    assert ctx.navigations == ["/"]


def test_timer_failure_falls_back_to_home() -> None:
    opener = FakeOpener(fail_after=1)
    ctx = FakeContext(url=_success_url(), opener=opener)
    sched = FakeScheduler()
    ch = _channel(ctx, sched)
    ch.start()

    sched.advance(100)
    assert ctx.navigations == ["/"]
    assert ch.state is HandshakeState.CLOSING
    sched.advance(5000)
    assert ctx.closed is False
    assert ctx.navigations == ["/"]


def test_failure_on_entry_falls_back_to_home() -> None:
    opener = FakeOpener(fail_after=0)
    ctx = FakeContext(url=_success_url(), opener=opener)
    ch = _channel(ctx, FakeScheduler())
    ch.start()
    assert ctx.navigations == ["/"]


def test_custom_home_path_is_used() -> None:
    ctx = FakeContext(url=f"{APP}/oauth-callback?error=denied")
    _channel(ctx, FakeScheduler(), home_path="/tracker").start()
    assert ctx.navigations == ["/tracker?error=denied"]


def test_asyncio_scheduler_runs_callbacks_on_loop() -> None:
    loop = asyncio.new_event_loop()
    fired = []
    try:
        AsyncioScheduler(loop).call_later(0.01, lambda: fired.append("tick"))
        loop.run_until_complete(asyncio.sleep(0.05))
    finally:
        loop.close()
    assert fired == ["tick"]
