"""
Exception hierarchy and error handling utilities for x402pay.

Provides:
- X402Error base class with error codes and categories
- The payment negotiation taxonomy (requirements, network, wallet, submission)
- Safe error message formatting (no key material or tokens in logs)
- classify_exception for foreign exceptions (httpx, asyncio, json)
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any

import httpx


class ErrorCategory(Enum):
    """Error categories for classification."""
    RECOVERABLE = "recoverable"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"


class X402Error(Exception):
    """Base exception for all x402pay errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.category in (ErrorCategory.RETRYABLE, ErrorCategory.TIMEOUT)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationError(X402Error):
    """Input validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", category=ErrorCategory.VALIDATION, details=details)


class NotFoundError(X402Error):
    """Resource not found error."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class MalformedRequirements(X402Error):
    """Payment requirements document could not be parsed. Never retried."""

    def __init__(self, message: str, errors: list[Any] | None = None):
        super().__init__(
            message,
            code="MALFORMED_REQUIREMENTS",
            category=ErrorCategory.FATAL,
            details={"errors": errors or []},
        )


class UnknownNetwork(X402Error):
    """Network key is not in the catalog."""

    def __init__(self, key: Any, message: str | None = None):
        super().__init__(
            message or f"Unknown network: {key}",
            code="UNKNOWN_NETWORK",
            category=ErrorCategory.NOT_FOUND,
            details={"key": str(key)},
        )


class WrongActiveChain(X402Error):
    """Wallet is connected to a different chain than the selected requirement."""

    def __init__(self, display_name: str, expected_chain_id: int, active_chain_id: int | None):
        super().__init__(
            f"Please switch to {display_name} network (Chain ID: {expected_chain_id})",
            code="WRONG_ACTIVE_CHAIN",
            category=ErrorCategory.RECOVERABLE,
            details={
                "expected_chain_id": expected_chain_id,
                "active_chain_id": active_chain_id,
            },
        )


class SignatureDeclined(X402Error):
    """Wallet did not produce a signature (user rejection or wallet failure)."""

    def __init__(self, message: str = "Signature request was declined"):
        super().__init__(message, code="SIGNATURE_DECLINED", category=ErrorCategory.RECOVERABLE)


class InsufficientBalance(X402Error):
    """Advisory: on-chain balance is below the required amount."""

    def __init__(self, balance: str, required: str, symbol: str = "USDC"):
        super().__init__(
            f"Insufficient {symbol} balance: {balance} < {required}",
            code="INSUFFICIENT_BALANCE",
            category=ErrorCategory.RECOVERABLE,
            details={"balance": balance, "required": required, "symbol": symbol},
        )


class DuplicateSubmission(X402Error):
    """A submission for this payment id is already in flight."""

    def __init__(self, payment_id: str):
        super().__init__(
            f"Payment {payment_id} is already being processed",
            code="DUPLICATE_SUBMISSION",
            category=ErrorCategory.RECOVERABLE,
            details={"payment_id": payment_id},
        )


class RemoteRejected(X402Error):
    """The resource answered the paid request with a rejection."""

    def __init__(self, message: str, status: int, body: Any = None):
        super().__init__(
            message,
            code="REMOTE_REJECTED",
            category=ErrorCategory.FATAL,
            details={"status": status, "body": body},
        )
        self.status = status


class TransportFailure(X402Error):
    """Network-level failure; the signed envelope can be resubmitted."""

    def __init__(self, message: str, status: int | None = None, cause: str | None = None):
        details: dict[str, Any] = {"status": status} if status is not None else {}
        if cause:
            details["cause"] = cause
        super().__init__(message, code="TRANSPORT_FAILURE", category=ErrorCategory.RETRYABLE, details=details)
        self.status = status


class AuthorizationExpired(X402Error):
    """Signed authorization is past validBefore and needs a fresh signature."""

    def __init__(self, payment_id: str, valid_before: int):
        super().__init__(
            f"Authorization for {payment_id} expired at {valid_before}",
            code="AUTHORIZATION_EXPIRED",
            category=ErrorCategory.RECOVERABLE,
            details={"payment_id": payment_id, "valid_before": valid_before},
        )


class PendingActionExists(X402Error):
    """A pending action with this payment id is still live."""

    def __init__(self, payment_id: str):
        super().__init__(
            f"Pending action already registered: {payment_id}",
            code="PENDING_ACTION_EXISTS",
            category=ErrorCategory.VALIDATION,
            details={"payment_id": payment_id},
        )


class NegotiationStateError(X402Error):
    """Operation is not allowed in the negotiator's current state."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move from {current} to {target}",
            code="INVALID_STATE",
            category=ErrorCategory.FATAL,
            details={"current": current, "target": target},
        )


class MalformedResourceResult(X402Error):
    """Paid resource returned a body that does not match its declared shape."""

    def __init__(self, resource_id: str, message: str):
        super().__init__(
            f"Unexpected {resource_id} result: {message}",
            code="MALFORMED_RESOURCE_RESULT",
            category=ErrorCategory.VALIDATION,
            details={"resource_id": resource_id},
        )


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth|private[_-]?key)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"0x[0-9a-fA-F]{64,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information (keys, signatures, bearer tokens) from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def classify_exception(exc: Exception) -> tuple[str, ErrorCategory, bool]:
    """
    Classify an exception and return (error_code, category, should_retry).

    Returns:
        Tuple of (error_code, category, should_retry)
    """
    if isinstance(exc, X402Error):
        return exc.code, exc.category, exc.retryable

    if isinstance(exc, httpx.TimeoutException):
        return "TIMEOUT", ErrorCategory.TIMEOUT, True

    if isinstance(exc, httpx.TransportError):
        return "CONNECTION_ERROR", ErrorCategory.RETRYABLE, True

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status >= 500:
            return "HTTP_ERROR", ErrorCategory.RETRYABLE, True
        return "HTTP_ERROR", ErrorCategory.FATAL, False

    if isinstance(exc, asyncio.TimeoutError):
        return "TIMEOUT", ErrorCategory.TIMEOUT, True

    if isinstance(exc, ConnectionError):
        return "CONNECTION_ERROR", ErrorCategory.RETRYABLE, True

    if isinstance(exc, json.JSONDecodeError):
        return "JSON_PARSE_ERROR", ErrorCategory.VALIDATION, False

    if isinstance(exc, ValueError):
        return "INVALID_VALUE", ErrorCategory.VALIDATION, False

    if isinstance(exc, KeyError):
        return "MISSING_KEY", ErrorCategory.VALIDATION, False

    return "INTERNAL_ERROR", ErrorCategory.FATAL, False
