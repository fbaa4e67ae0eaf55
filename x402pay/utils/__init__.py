"""Utility functions for x402pay."""

from x402pay.utils.exceptions import (
    X402Error,
    ValidationError,
    NotFoundError,
    MalformedRequirements,
    UnknownNetwork,
    WrongActiveChain,
    SignatureDeclined,
    InsufficientBalance,
    DuplicateSubmission,
    RemoteRejected,
    TransportFailure,
    AuthorizationExpired,
    PendingActionExists,
    NegotiationStateError,
    MalformedResourceResult,
    ErrorCategory,
    classify_exception,
    sanitize_error_message,
)

__all__ = [
    "X402Error",
    "ValidationError",
    "NotFoundError",
    "MalformedRequirements",
    "UnknownNetwork",
    "WrongActiveChain",
    "SignatureDeclined",
    "InsufficientBalance",
    "DuplicateSubmission",
    "RemoteRejected",
    "TransportFailure",
    "AuthorizationExpired",
    "PendingActionExists",
    "NegotiationStateError",
    "MalformedResourceResult",
    "ErrorCategory",
    "classify_exception",
    "sanitize_error_message",
]
