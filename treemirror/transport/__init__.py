"""Transports and wire format between producer and consumer."""

from .base import SendResult, Transport
from .codec import DeltaCodec
from .http import ConsumerClient, HTTPTransport
from .messages import Message, parse_message

__all__ = [
    "ConsumerClient",
    "DeltaCodec",
    "HTTPTransport",
    "Message",
    "SendResult",
    "Transport",
    "parse_message",
]
