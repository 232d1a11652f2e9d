"""Google service-account credentials for the FCM HTTP v1 API.

A signed JWT assertion is exchanged at the OAuth2 token endpoint for a
short-lived bearer token. Tokens are cached on the provider instance only,
and a new provider is built for every cron run.
"""

from __future__ import annotations

import json
import time
from pathlib import Path

import aiohttp
import jwt
import structlog
from pydantic import BaseModel, ValidationError

from stockly.core.config import FcmConfig
from stockly.notifications.exceptions import FcmCredentialError, FcmServiceAccountError

logger = structlog.stdlib.get_logger()

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECS = 3600


class ServiceAccount(BaseModel):
    """The fields of a service-account JSON key that the exchange needs."""

    project_id: str
    client_email: str
    private_key: str
    token_uri: str = "https://oauth2.googleapis.com/token"


def load_service_account(config: FcmConfig) -> ServiceAccount:
    """Parse the service account from inline JSON or from a key file."""
    raw = config.service_account_json.get_secret_value()
    if not raw and config.service_account_path:
        try:
            raw = Path(config.service_account_path).read_text()
        except OSError as exc:
            raise FcmServiceAccountError(
                f"cannot read service account file: {exc}"
            ) from exc
    if not raw:
        raise FcmServiceAccountError("FCM service account is not configured")

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise FcmServiceAccountError("service account is not valid JSON") from exc
    if not isinstance(data, dict):
        raise FcmServiceAccountError("service account JSON must be an object")

    try:
        account = ServiceAccount.model_validate(data)
    except ValidationError as exc:
        raise FcmServiceAccountError("invalid service account JSON structure") from exc
    if not (account.project_id and account.client_email and account.private_key):
        raise FcmServiceAccountError("invalid service account JSON structure")
    return account


def build_assertion(
    account: ServiceAccount,
    scope: str,
    audience: str,
    now: int | None = None,
) -> str:
    """Return an RS256-signed JWT assertion for the token endpoint."""
    issued_at = int(time.time()) if now is None else now
    claims = {
        "iss": account.client_email,
        "sub": account.client_email,
        "aud": audience,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECS,
        "scope": scope,
    }
    try:
        return jwt.encode(claims, account.private_key, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise FcmCredentialError(f"failed to sign assertion: {exc}") from exc


class AccessTokenProvider:
    """Exchanges a service-account assertion for a bearer token, once.

    Usage::

        provider = AccessTokenProvider(account, config, session)
        token = await provider.get_token()
    """

    def __init__(
        self,
        account: ServiceAccount,
        config: FcmConfig,
        session: aiohttp.ClientSession,
    ) -> None:
        self._account = account
        self._config = config
        self._session = session
        self._token: str | None = None

    @property
    def project_id(self) -> str:
        return self._account.project_id

    def reset(self) -> None:
        self._token = None

    async def get_token(self) -> str:
        if self._token is not None:
            return self._token

        token_url = self._config.token_url or self._account.token_uri
        assertion = build_assertion(self._account, self._config.scope, token_url)
        form = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_secs)

        started = time.monotonic()
        try:
            async with self._session.post(token_url, data=form, timeout=timeout) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise FcmCredentialError(
                        f"token endpoint returned {resp.status}: {body[:200]}"
                    )
                payload = await resp.json(content_type=None)
        except FcmCredentialError:
            raise
        except Exception as exc:
            raise FcmCredentialError(f"token exchange failed: {exc}") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise FcmCredentialError("no access_token in token response")

        self._token = str(token)
        logger.debug(
            "fcm_access_token_obtained",
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return self._token
