"""Tests for FcmDispatcher — payload shape, retries, classification, cleanup."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from stockly.core.config import FcmConfig
from stockly.notifications.errors import FcmErrorKind
from stockly.notifications.exceptions import FcmCredentialError
from stockly.notifications.fcm import FcmDispatcher, build_message

TOKEN = "fcm-device-token-0123456789"


# ── Helpers ─────────────────────────────────────────────────────


def _config(**kw: object) -> FcmConfig:
    defaults: dict[str, object] = {
        "api_base": "https://fcm.test/v1/projects",
        "max_attempts": 3,
        "retry_delays_ms": [200, 500, 1000],
    }
    defaults.update(kw)
    return FcmConfig(**defaults)  # type: ignore[arg-type]


def _mock_response(
    status: int = 200,
    body: object = None,
    reason: str = "OK",
) -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.reason = reason
    resp.json = AsyncMock(return_value=body)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _fcm_error(status: str, code: int = 400, message: str = "error", detail: str | None = None) -> dict:
    err: dict[str, object] = {"code": code, "message": message, "status": status}
    if detail:
        err["details"] = [{"errorCode": detail}]
    return {"error": err}


def _dispatcher(*responses: object, **cfg: object) -> tuple[FcmDispatcher, MagicMock, AsyncMock]:
    sleep = AsyncMock()
    d = FcmDispatcher(_config(**cfg), sleep=sleep)
    provider = MagicMock()
    provider.project_id = "stockly-test"
    provider.get_token = AsyncMock(return_value="bearer-abc")
    d._provider = provider

    mock_session = MagicMock()
    mock_session.post = MagicMock(side_effect=list(responses))
    mock_session.closed = False
    mock_session.close = AsyncMock()
    d._session = mock_session
    return d, mock_session, sleep


# ── build_message ───────────────────────────────────────────────


class TestBuildMessage:
    def test_shape(self) -> None:
        msg = build_message(TOKEN, "AAPL Alert", "AAPL is now $191.00", {"price": 191.0})
        assert msg["token"] == TOKEN
        assert msg["notification"] == {"title": "AAPL Alert", "body": "AAPL is now $191.00"}
        assert msg["data"] == {"price": "191.0"}
        assert msg["android"]["priority"] == "high"
        assert msg["apns"]["headers"]["apns-priority"] == "10"


# ── send ────────────────────────────────────────────────────────


class TestSendSuccess:
    async def test_first_attempt_success(self) -> None:
        d, session, sleep = _dispatcher(
            _mock_response(200, {"name": "projects/stockly-test/messages/1"}),
        )
        result = await d.send(TOKEN, "t", "b", {"alertId": "a1"})

        assert result.success is True
        assert result.message_id == "projects/stockly-test/messages/1"
        assert result.attempts == 1
        session.post.assert_called_once()
        url = session.post.call_args[0][0]
        assert url == "https://fcm.test/v1/projects/stockly-test/messages:send"
        kwargs = session.post.call_args[1]
        assert kwargs["headers"]["Authorization"] == "Bearer bearer-abc"
        assert kwargs["json"]["message"]["token"] == TOKEN
        sleep.assert_not_called()

    async def test_transient_then_success(self) -> None:
        d, session, sleep = _dispatcher(
            _mock_response(503, _fcm_error("UNAVAILABLE", 503), "Service Unavailable"),
            _mock_response(200, {"name": "m-2"}),
        )
        result = await d.send(TOKEN, "t", "b")

        assert result.success is True
        assert result.attempts == 2
        assert session.post.call_count == 2
        sleep.assert_awaited_once_with(0.2)

    async def test_transport_exception_retried(self) -> None:
        d, session, _ = _dispatcher(
            ConnectionError("reset by peer"),
            _mock_response(200, {"name": "m-3"}),
        )
        result = await d.send(TOKEN, "t", "b")
        assert result.success is True
        assert result.attempts == 2


class TestSendFailure:
    async def test_not_found_is_permanent_and_cleans_up(self) -> None:
        d, session, sleep = _dispatcher(
            _mock_response(404, _fcm_error("NOT_FOUND", 404, "Requested entity was not found."), "Not Found"),
        )
        result = await d.send(TOKEN, "t", "b")

        assert result.success is False
        assert result.error_kind == FcmErrorKind.NOT_FOUND
        assert result.is_permanent is True
        assert result.should_cleanup_token is True
        assert result.attempts == 1
        session.post.assert_called_once()
        sleep.assert_not_called()

    async def test_unregistered_detail_cleans_up(self) -> None:
        d, _, _ = _dispatcher(
            _mock_response(404, _fcm_error("", 404, "gone", detail="UNREGISTERED"), "Not Found"),
        )
        result = await d.send(TOKEN, "t", "b")
        assert result.error_kind == FcmErrorKind.NOT_FOUND
        assert result.should_cleanup_token is True

    async def test_permission_denied_keeps_token(self) -> None:
        d, session, _ = _dispatcher(
            _mock_response(403, _fcm_error("PERMISSION_DENIED", 403), "Forbidden"),
        )
        result = await d.send(TOKEN, "t", "b")
        assert result.error_kind == FcmErrorKind.PERMISSION_DENIED
        assert result.is_permanent is True
        assert result.should_cleanup_token is False
        session.post.assert_called_once()

    async def test_retries_exhausted(self) -> None:
        d, session, sleep = _dispatcher(
            *(_mock_response(429, _fcm_error("RESOURCE_EXHAUSTED", 429)) for _ in range(3)),
        )
        result = await d.send(TOKEN, "t", "b")

        assert result.success is False
        assert result.error_kind == FcmErrorKind.RESOURCE_EXHAUSTED
        assert result.attempts == 3
        assert session.post.call_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.2, 0.5]

    async def test_single_attempt_config(self) -> None:
        d, session, sleep = _dispatcher(
            _mock_response(503, None, "Service Unavailable"),
            max_attempts=1,
        )
        result = await d.send(TOKEN, "t", "b")
        assert result.attempts == 1
        assert result.error_kind == FcmErrorKind.UNKNOWN_ERROR
        session.post.assert_called_once()
        sleep.assert_not_called()

    async def test_unparseable_body_uses_http_reason(self) -> None:
        d, _, _ = _dispatcher(_mock_response(404, None, "Not Found"))
        result = await d.send(TOKEN, "t", "b")
        assert result.error_kind == FcmErrorKind.NOT_FOUND
        assert result.should_cleanup_token is True

    async def test_unauthenticated_resets_provider(self) -> None:
        d, _, _ = _dispatcher(
            _mock_response(401, _fcm_error("UNAUTHENTICATED", 401), "Unauthorized"),
            _mock_response(200, {"name": "m-4"}),
        )
        provider = d._provider
        result = await d.send(TOKEN, "t", "b")
        assert result.success is True
        provider.reset.assert_called_once()  # type: ignore[union-attr]


class TestSendPreconditions:
    async def test_short_token_rejected_without_network(self) -> None:
        d, session, _ = _dispatcher()
        result = await d.send("short", "t", "b")
        assert result.error_kind == FcmErrorKind.INVALID_ARGUMENT
        assert result.should_cleanup_token is True
        assert result.attempts == 0
        session.post.assert_not_called()

    async def test_missing_service_account(self) -> None:
        d = FcmDispatcher(_config(), sleep=AsyncMock())
        mock_session = MagicMock()
        mock_session.closed = False
        d._session = mock_session

        result = await d.send(TOKEN, "t", "b")
        assert result.success is False
        assert result.error_kind == FcmErrorKind.PERMISSION_DENIED
        assert result.attempts == 0
        mock_session.post.assert_not_called()

    async def test_token_exchange_failure_exhausts_budget(self) -> None:
        d, session, sleep = _dispatcher()
        provider = d._provider
        provider.get_token = AsyncMock(side_effect=FcmCredentialError("denied"))  # type: ignore[union-attr]
        result = await d.send(TOKEN, "t", "b")
        assert result.success is False
        assert result.error_kind == FcmErrorKind.UNAUTHENTICATED
        assert result.is_permanent is False
        assert result.attempts == 3
        assert provider.get_token.await_count == 3  # type: ignore[union-attr]
        assert [c.args[0] for c in sleep.await_args_list] == [0.2, 0.5]
        session.post.assert_not_called()

    async def test_token_exchange_timeout_then_success(self) -> None:
        d, session, sleep = _dispatcher(_mock_response(200, {"name": "m-5"}))
        provider = d._provider
        provider.get_token = AsyncMock(  # type: ignore[union-attr]
            side_effect=[FcmCredentialError("token exchange failed: TimeoutError"), "bearer-fresh"],
        )
        result = await d.send(TOKEN, "t", "b")
        assert result.success is True
        assert result.attempts == 2
        provider.reset.assert_called_once()  # type: ignore[union-attr]
        sleep.assert_awaited_once_with(0.2)
        session.post.assert_called_once()
        assert session.post.call_args[1]["headers"]["Authorization"] == "Bearer bearer-fresh"


class TestClose:
    async def test_close_releases_session(self) -> None:
        d, session, _ = _dispatcher()
        await d.close()
        session.close.assert_awaited_once()
        assert d._session is None
