"""Push notification delivery through Firebase Cloud Messaging."""

from stockly.notifications.credentials import (
    AccessTokenProvider,
    ServiceAccount,
    build_assertion,
    load_service_account,
)
from stockly.notifications.errors import (
    CLASSIFICATION_RULES,
    FcmErrorBody,
    FcmErrorInfo,
    FcmErrorKind,
    classify_fcm_error,
    parse_error_body,
)
from stockly.notifications.exceptions import (
    FcmCredentialError,
    FcmError,
    FcmServiceAccountError,
)
from stockly.notifications.fcm import FcmDispatcher, build_message
from stockly.notifications.types import DispatchResult

__all__ = [
    "CLASSIFICATION_RULES",
    "AccessTokenProvider",
    "DispatchResult",
    "FcmCredentialError",
    "FcmDispatcher",
    "FcmError",
    "FcmErrorBody",
    "FcmErrorInfo",
    "FcmErrorKind",
    "FcmServiceAccountError",
    "ServiceAccount",
    "build_assertion",
    "build_message",
    "classify_fcm_error",
    "load_service_account",
    "parse_error_body",
]
