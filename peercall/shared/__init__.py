"""Shared message contract used by both the relay server and the client.

Only event names, payload models and frame builders live here. Do not place
routing or call-state logic in this package.
"""

from . import messages
from .messages import (
    CallAcceptedPayload,
    CallUserPayload,
    EndCallPayload,
    IceCandidatePayload,
    RegisterPayload,
    envelope,
    parse_register,
)

__all__ = [
    "messages",
    "CallAcceptedPayload",
    "CallUserPayload",
    "EndCallPayload",
    "IceCandidatePayload",
    "RegisterPayload",
    "envelope",
    "parse_register",
]
