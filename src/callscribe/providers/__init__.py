"""Capability providers consumed by the callscribe core."""

from .base import (
    CallTransport,
    ConnectionInfo,
    IdentityProvider,
    IssuedToken,
    NullCallTransport,
    SummarizationProvider,
    SummaryDraft,
)
from .openai_summarizer import OpenAISummarizationProvider

__all__ = [
    "CallTransport",
    "ConnectionInfo",
    "IdentityProvider",
    "IssuedToken",
    "NullCallTransport",
    "OpenAISummarizationProvider",
    "SummarizationProvider",
    "SummaryDraft",
]
