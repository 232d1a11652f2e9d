"""FCM error classification — ordered rules, first match wins.

Status and numeric-code rules come before the free-text rules: message
matching is only a fallback and must not shadow a precise status.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class FcmErrorKind(StrEnum):
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    UNAVAILABLE = "UNAVAILABLE"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class FcmErrorBody(BaseModel):
    """The ``error`` object of an FCM v1 error response."""

    code: int = 0
    message: str = ""
    status: str = ""
    detail_codes: list[str] = Field(default_factory=list)


class FcmErrorInfo(BaseModel):
    kind: FcmErrorKind
    message: str = ""
    is_permanent: bool = False
    should_cleanup_token: bool = False


# kind -> (is_permanent, should_cleanup_token)
_KIND_FLAGS: dict[FcmErrorKind, tuple[bool, bool]] = {
    FcmErrorKind.INVALID_ARGUMENT: (True, True),
    FcmErrorKind.NOT_FOUND: (True, True),
    FcmErrorKind.PERMISSION_DENIED: (True, False),
    FcmErrorKind.UNAUTHENTICATED: (False, False),
    FcmErrorKind.RESOURCE_EXHAUSTED: (False, False),
    FcmErrorKind.UNAVAILABLE: (False, False),
    FcmErrorKind.DEADLINE_EXCEEDED: (False, False),
    FcmErrorKind.NETWORK_ERROR: (False, False),
    FcmErrorKind.UNKNOWN_ERROR: (False, False),
}

Rule = tuple[Callable[[FcmErrorBody], bool], FcmErrorKind]


def _status_or_code(status: str, code: int) -> Callable[[FcmErrorBody], bool]:
    return lambda e: e.status == status or e.code == code


def _message_contains(*needles: str) -> Callable[[FcmErrorBody], bool]:
    return lambda e: any(n in e.message.lower() for n in needles)


def _unregistered(e: FcmErrorBody) -> bool:
    return e.status == "UNREGISTERED" or "UNREGISTERED" in e.detail_codes


CLASSIFICATION_RULES: list[Rule] = [
    (_status_or_code("INVALID_ARGUMENT", 3), FcmErrorKind.INVALID_ARGUMENT),
    (_status_or_code("NOT_FOUND", 5), FcmErrorKind.NOT_FOUND),
    (_unregistered, FcmErrorKind.NOT_FOUND),
    (_status_or_code("PERMISSION_DENIED", 7), FcmErrorKind.PERMISSION_DENIED),
    (_status_or_code("UNAUTHENTICATED", 16), FcmErrorKind.UNAUTHENTICATED),
    (_status_or_code("RESOURCE_EXHAUSTED", 8), FcmErrorKind.RESOURCE_EXHAUSTED),
    (_status_or_code("UNAVAILABLE", 14), FcmErrorKind.UNAVAILABLE),
    (_status_or_code("DEADLINE_EXCEEDED", 4), FcmErrorKind.DEADLINE_EXCEEDED),
    (_message_contains("not found"), FcmErrorKind.NOT_FOUND),
    (_message_contains("network", "timeout", "connection"), FcmErrorKind.NETWORK_ERROR),
]


def error_info(kind: FcmErrorKind, message: str = "") -> FcmErrorInfo:
    permanent, cleanup = _KIND_FLAGS[kind]
    return FcmErrorInfo(
        kind=kind,
        message=message,
        is_permanent=permanent,
        should_cleanup_token=cleanup,
    )


def classify_fcm_error(error: FcmErrorBody) -> FcmErrorInfo:
    """Map an FCM error body to a kind and its retry / cleanup flags."""
    for predicate, kind in CLASSIFICATION_RULES:
        if predicate(error):
            return error_info(kind, error.message)
    return error_info(FcmErrorKind.UNKNOWN_ERROR, error.message)


def parse_error_body(payload: Any, http_status: int, reason: str = "") -> FcmErrorBody:
    """Build an FcmErrorBody from a decoded response, with a fallback.

    Bodies without a usable ``error`` object are synthesised from the HTTP
    status so classification still has something to work with.
    """
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        err = payload["error"]
        code = err.get("code")
        details = err.get("details")
        detail_codes = [
            str(d["errorCode"])
            for d in (details if isinstance(details, list) else [])
            if isinstance(d, dict) and d.get("errorCode")
        ]
        return FcmErrorBody(
            code=code if isinstance(code, int) else http_status,
            message=str(err.get("message") or ""),
            status=str(err.get("status") or ""),
            detail_codes=detail_codes,
        )
    return FcmErrorBody(code=http_status, message=reason, status="UNKNOWN")
