"""
Cross-window completion of the popup login.

The completion page (`CompletionChannel`) reports the provider result to the
window that opened it; the opener (`HandshakeReceiver`) accepts the first
valid report. The channel has no acknowledgments, so success is broadcast
several times and the token is also left in client storage for recovery.
"""

from calonik.completion.channel import CompletionChannel, HandshakeSession, HandshakeState
from calonik.completion.messages import ErrorMessage, HandshakeMessage, SuccessMessage, parse_handshake_message
from calonik.completion.receiver import HandshakeReceiver, ReceiverState
from calonik.completion.scheduler import AsyncioScheduler, Scheduler
from calonik.completion.timing import HandshakeTiming, load_handshake_timing

__all__ = [
    "AsyncioScheduler",
    "CompletionChannel",
    "ErrorMessage",
    "HandshakeMessage",
    "HandshakeReceiver",
    "HandshakeSession",
    "HandshakeState",
    "HandshakeTiming",
    "ReceiverState",
    "Scheduler",
    "SuccessMessage",
    "load_handshake_timing",
    "parse_handshake_message",
]
