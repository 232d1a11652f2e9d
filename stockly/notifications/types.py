"""Result types for push delivery."""

from __future__ import annotations

from pydantic import BaseModel

from stockly.notifications.errors import FcmErrorInfo, FcmErrorKind


class DispatchResult(BaseModel):
    """Outcome of delivering one message to one destination token.

    ``should_cleanup_token`` is always populated so the caller can deactivate
    destinations that will never accept a message again.
    """

    success: bool
    message_id: str | None = None
    error_kind: FcmErrorKind | None = None
    error_message: str | None = None
    is_permanent: bool = False
    should_cleanup_token: bool = False
    attempts: int = 0

    @classmethod
    def failure(cls, info: FcmErrorInfo, attempts: int) -> DispatchResult:
        return cls(
            success=False,
            error_kind=info.kind,
            error_message=info.message,
            is_permanent=info.is_permanent,
            should_cleanup_token=info.should_cleanup_token,
            attempts=attempts,
        )
