"""Transport implementations."""

from .base import Transport
from .mock import MockTransport
from .models import IdentificationRequest, Message, RawResponse
from .openai import OpenAITransport
from .proxy import BackendTransport

__all__ = [
    "BackendTransport",
    "IdentificationRequest",
    "Message",
    "MockTransport",
    "OpenAITransport",
    "RawResponse",
    "Transport",
]
