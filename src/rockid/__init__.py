"""rockid: rock identification from photos via a vision-capable LLM.

Public API:
    - identify(): Photo in, validated IdentificationResult out
    - Config: Configuration dataclass
    - RequestDispatcher: Connectivity-aware dispatch with bounded retry
    - normalize() / RecordBuilder: Provider text to typed result
    - BackendHandler: Proxy-side request handler
"""

from __future__ import annotations

import logging

from rockid.backend import BackendHandler, ImageStore, ProxyReply
from rockid.builder import RecordBuilder
from rockid.config import Config
from rockid.connectivity import ConnectivityMonitor, ConnectivityStatus
from rockid.dispatch import DispatchHandle, RequestDispatcher
from rockid.errors import (
    AuthError,
    ConfigurationError,
    DispatchCancelledError,
    DispatchError,
    IdentificationFailedError,
    MissingRequiredFieldsError,
    NetworkError,
    NoConnectionError,
    ParseError,
    RecordValidationError,
    RockIdError,
    UpstreamError,
)
from rockid.identify import create_transport, identify
from rockid.normalize import NormalizedRecord, RecordShape, normalize
from rockid.records import IdentificationResult
from rockid.retry import RetryPolicy

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("rockid")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("rockid").addHandler(logging.NullHandler())

__all__ = [
    "AuthError",
    "BackendHandler",
    "Config",
    "ConfigurationError",
    "ConnectivityMonitor",
    "ConnectivityStatus",
    "DispatchCancelledError",
    "DispatchError",
    "DispatchHandle",
    "IdentificationFailedError",
    "IdentificationResult",
    "ImageStore",
    "MissingRequiredFieldsError",
    "NetworkError",
    "NoConnectionError",
    "NormalizedRecord",
    "ParseError",
    "ProxyReply",
    "RecordBuilder",
    "RecordShape",
    "RecordValidationError",
    "RequestDispatcher",
    "RetryPolicy",
    "RockIdError",
    "UpstreamError",
    "create_transport",
    "identify",
    "normalize",
]
