from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

from calonik.auth.util import sanitize_next_path


@dataclass(frozen=True)
class HandshakeTiming:
    # Success broadcasts, ms after entry. No acknowledgment exists, so all fire.
    broadcast_delays_ms: Tuple[int, ...] = (0, 100, 500)
    # Leaves the last broadcast a 1s margin before the context goes away.
    success_close_ms: int = 1500
    error_close_ms: int = 1000

    # Waiting for the provider redirect to attach parameters.
    reload_interval_ms: int = 2000
    max_reloads: int = 30

    # Five minutes, after which the opener stops waiting for the popup.
    opener_timeout_ms: int = 300_000

    home_path: str = "/"


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


def _env_delays(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    out = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(max(0, int(part)))
        except ValueError:
            return default
    return tuple(sorted(out)) or default


def load_handshake_timing() -> HandshakeTiming:
    d = HandshakeTiming()
    return HandshakeTiming(
        broadcast_delays_ms=_env_delays("HANDSHAKE_BROADCAST_DELAYS_MS", d.broadcast_delays_ms),
        success_close_ms=_env_int("HANDSHAKE_SUCCESS_CLOSE_MS", d.success_close_ms),
        error_close_ms=_env_int("HANDSHAKE_ERROR_CLOSE_MS", d.error_close_ms),
        reload_interval_ms=_env_int("HANDSHAKE_RELOAD_INTERVAL_MS", d.reload_interval_ms, minimum=1),
        max_reloads=_env_int("HANDSHAKE_MAX_RELOADS", d.max_reloads),
        opener_timeout_ms=_env_int("HANDSHAKE_OPENER_TIMEOUT_MS", d.opener_timeout_ms, minimum=1),
        home_path=sanitize_next_path(os.getenv("HANDSHAKE_HOME_PATH") or d.home_path),
    )
