"""FCM HTTP v1 push delivery with error classification and retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp
import structlog

from stockly.core.config import FcmConfig, get_settings
from stockly.core.logging import mask_token
from stockly.notifications.credentials import (
    AccessTokenProvider,
    ServiceAccount,
    load_service_account,
)
from stockly.notifications.errors import (
    FcmErrorInfo,
    FcmErrorKind,
    classify_fcm_error,
    error_info,
    parse_error_body,
)
from stockly.notifications.exceptions import FcmCredentialError, FcmServiceAccountError
from stockly.notifications.types import DispatchResult

logger = structlog.stdlib.get_logger()

MIN_TOKEN_LENGTH = 10

SleepFn = Callable[[float], Awaitable[None]]


def build_message(
    token: str,
    title: str,
    body: str,
    data: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the ``message`` object for ``messages:send``.

    FCM only accepts string values in ``data``, so every value is coerced.
    """
    return {
        "token": token,
        "notification": {"title": title, "body": body},
        "data": {str(k): str(v) for k, v in (data or {}).items()},
        "android": {
            "priority": "high",
            "notification": {"sound": "default", "channel_id": "default"},
        },
        "apns": {
            "headers": {"apns-priority": "10"},
            "payload": {"aps": {"sound": "default"}},
        },
    }


class FcmDispatcher:
    """Sends push messages through FCM on behalf of one cron run.

    The bearer token obtained from the service-account exchange is cached for
    the lifetime of this instance only. Build a new dispatcher per run.

    Usage::

        dispatcher = FcmDispatcher(settings.fcm)
        result = await dispatcher.send(token, "AAPL Alert", "AAPL is now $190.00", {})
        await dispatcher.close()
    """

    def __init__(
        self,
        config: FcmConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._config = config or get_settings().fcm
        self._session = session
        self._sleep = sleep
        self._provider: AccessTokenProvider | None = None
        self._token_lock = asyncio.Lock()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _get_provider(self) -> AccessTokenProvider:
        if self._provider is None:
            account: ServiceAccount = load_service_account(self._config)
            self._provider = AccessTokenProvider(account, self._config, self._get_session())
        return self._provider

    async def _access_token(self) -> str:
        async with self._token_lock:
            return await self._get_provider().get_token()

    def _retry_delay(self, attempt: int) -> float:
        delays = self._config.retry_delays_ms
        if not delays:
            return 0.0
        return delays[min(attempt - 1, len(delays) - 1)] / 1000.0

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> DispatchResult:
        """Deliver one message to *token*, retrying transient failures."""
        if not token or len(token) < MIN_TOKEN_LENGTH:
            logger.warning("fcm_token_invalid_format", token=mask_token(token or ""))
            return DispatchResult.failure(
                error_info(FcmErrorKind.INVALID_ARGUMENT, "Invalid FCM token format"),
                attempts=0,
            )

        try:
            provider = self._get_provider()
        except FcmServiceAccountError as exc:
            logger.error("fcm_service_account_invalid", error=str(exc))
            return DispatchResult.failure(
                error_info(FcmErrorKind.PERMISSION_DENIED, str(exc)), attempts=0,
            )

        url = f"{self._config.api_base}/{provider.project_id}/messages:send"
        payload = {"message": build_message(token, title, body, data)}
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_secs)
        max_attempts = max(1, self._config.max_attempts)

        info: FcmErrorInfo = error_info(FcmErrorKind.UNKNOWN_ERROR, "no attempt made")
        for attempt in range(1, max_attempts + 1):
            outcome = await self._attempt(url, payload, token, timeout, attempt)
            if isinstance(outcome, DispatchResult):
                return outcome
            info = outcome

            if info.is_permanent:
                return DispatchResult.failure(info, attempts=attempt)
            if attempt == max_attempts:
                break

            if info.kind == FcmErrorKind.UNAUTHENTICATED:
                provider.reset()
            await self._sleep(self._retry_delay(attempt))

        logger.error(
            "fcm_retries_exhausted",
            token=mask_token(token),
            attempts=max_attempts,
            error_kind=info.kind,
        )
        return DispatchResult.failure(info, attempts=max_attempts)

    async def _attempt(
        self,
        url: str,
        payload: dict[str, Any],
        token: str,
        timeout: aiohttp.ClientTimeout,
        attempt: int,
    ) -> DispatchResult | FcmErrorInfo:
        """One token fetch + POST. Returns the success result or the failure info."""
        try:
            access_token = await self._access_token()
        except FcmCredentialError as exc:
            # Exchange timeouts and rejections share the retry budget.
            logger.warning("fcm_access_token_failed", error=str(exc), attempt=attempt)
            return error_info(FcmErrorKind.UNAUTHENTICATED, str(exc))

        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            async with self._get_session().post(
                url, json=payload, headers=headers, timeout=timeout,
            ) as resp:
                if resp.status == 200:
                    message_id = await self._read_message_id(resp)
                    logger.info(
                        "fcm_sent",
                        token=mask_token(token),
                        attempt=attempt,
                        message_id=message_id,
                    )
                    return DispatchResult(success=True, message_id=message_id, attempts=attempt)
                try:
                    error_payload = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    error_payload = None
                info = classify_fcm_error(
                    parse_error_body(error_payload, resp.status, str(resp.reason or "")),
                )
                logger.warning(
                    "fcm_send_failed",
                    token=mask_token(token),
                    attempt=attempt,
                    http_status=resp.status,
                    error_kind=info.kind,
                    is_permanent=info.is_permanent,
                    should_cleanup_token=info.should_cleanup_token,
                    error=info.message[:200],
                )
                return info
        except Exception as exc:
            info = error_info(FcmErrorKind.UNKNOWN_ERROR, str(exc) or type(exc).__name__)
            logger.warning(
                "fcm_send_error",
                token=mask_token(token),
                attempt=attempt,
                error=info.message,
                exc_type=type(exc).__name__,
            )
            return info

    @staticmethod
    async def _read_message_id(resp: aiohttp.ClientResponse) -> str | None:
        try:
            body = await resp.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return None
        if isinstance(body, dict) and body.get("name"):
            return str(body["name"])
        return None

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._provider = None
