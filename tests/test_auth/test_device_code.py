"""Tests for the device authorization flow (RFC 8628) and token audience parsing."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from idpctl.auth.device_code import (
    DeviceAuthenticator,
    decode_jwt_claims,
    ensure_audience_url,
    parse_tenant,
)
from idpctl.exceptions import (
    AudienceNotFoundError,
    AuthError,
    DecodeError,
    DeviceCodeExpiredError,
    ProtocolError,
    TransportError,
)
from idpctl.models import Credentials, DeviceCodeState
from idpctl.scopes import REQUIRED_SCOPES

CREDENTIALS = Credentials(
    audience="https://*.example.com/api/v2/",
    client_id="cli-client",
    device_code_endpoint="https://login.example.com/oauth/device/code",
    oauth_token_endpoint="https://login.example.com/oauth/token",
)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _scripted(responses: list[httpx.Response], seen: list[httpx.Request]) -> httpx.MockTransport:
    """Transport returning *responses* in order and recording requests."""
    pending = iter(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return next(pending)

    return httpx.MockTransport(handler)


def _run(authenticator_factory: Callable[[httpx.AsyncClient], DeviceAuthenticator],
         transport: httpx.MockTransport,
         call: Callable[[DeviceAuthenticator], Any]) -> Any:
    async def _main() -> Any:
        async with httpx.AsyncClient(transport=transport) as client:
            return await call(authenticator_factory(client))

    return asyncio.run(_main())


def _state(**overrides: Any) -> DeviceCodeState:
    data: dict[str, Any] = {
        "device_code": "dev-123",
        "user_code": "ABCD-EFGH",
        "verification_uri_complete": "https://login.example.com/activate?user_code=ABCD-EFGH",
        "expires_in": 900,
        "interval": 5,
    }
    data.update(overrides)
    return DeviceCodeState.model_validate(data)


# -------------------------------------------------------------------------
# request_device_code
# -------------------------------------------------------------------------


class TestRequestDeviceCode:
    def test_posts_client_scopes_and_audience(self) -> None:
        seen: list[httpx.Request] = []
        transport = _scripted(
            [
                httpx.Response(
                    200,
                    json={
                        "device_code": "dev-123",
                        "user_code": "ABCD-EFGH",
                        "verification_uri_complete": "https://login.example.com/activate?user_code=ABCD-EFGH",
                        "expires_in": 600,
                        "interval": 5,
                    },
                )
            ],
            seen,
        )
        state = _run(
            lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c),
            transport,
            lambda a: a.request_device_code(["read:stats"]),
        )

        assert state.user_code == "ABCD-EFGH"
        assert state.expires_in == 600
        assert str(seen[0].url) == CREDENTIALS.device_code_endpoint
        form = _form(seen[0])
        assert form["client_id"] == "cli-client"
        assert form["audience"] == CREDENTIALS.audience
        assert form["scope"].split(" ") == list(REQUIRED_SCOPES) + ["read:stats"]

    def test_explicit_audience(self) -> None:
        seen: list[httpx.Request] = []
        transport = _scripted(
            [httpx.Response(200, json={"device_code": "d", "user_code": "u", "verification_uri": "https://x"})],
            seen,
        )
        _run(
            lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c),
            transport,
            lambda a: a.request_device_code(audience="https://acme.example.com/api/v2/"),
        )
        assert _form(seen[0])["audience"] == "https://acme.example.com/api/v2/"

    def test_non_2xx_includes_status_and_body(self) -> None:
        transport = _scripted([httpx.Response(500, text="upstream exploded")], [])
        with pytest.raises(TransportError) as exc_info:
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c),
                transport,
                lambda a: a.request_device_code(),
            )
        assert exc_info.value.status_code == 500
        assert "500" in str(exc_info.value)
        assert "upstream exploded" in str(exc_info.value)

    def test_malformed_json(self) -> None:
        transport = _scripted([httpx.Response(200, text="<html>")], [])
        with pytest.raises(DecodeError):
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c),
                transport,
                lambda a: a.request_device_code(),
            )

    def test_missing_fields(self) -> None:
        transport = _scripted([httpx.Response(200, json={"user_code": "u"})], [])
        with pytest.raises(DecodeError):
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c),
                transport,
                lambda a: a.request_device_code(),
            )

    def test_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError, match="connection refused") as exc_info:
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c),
                httpx.MockTransport(handler),
                lambda a: a.request_device_code(),
            )
        assert exc_info.value.status_code is None


# -------------------------------------------------------------------------
# poll_for_token
# -------------------------------------------------------------------------


class TestPollForToken:
    def test_pending_then_success(self, make_jwt: Callable[..., str]) -> None:
        token = make_jwt(sub="user|1")
        seen: list[httpx.Request] = []
        sleep = FakeSleep()
        transport = _scripted(
            [
                httpx.Response(403, json={"error": "authorization_pending"}),
                httpx.Response(
                    200,
                    json={
                        "access_token": token,
                        "refresh_token": "rt-1",
                        "id_token": "idt",
                        "token_type": "Bearer",
                        "expires_in": 86400,
                    },
                ),
            ],
            seen,
        )

        result = _run(
            lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=sleep),
            transport,
            lambda a: a.poll_for_token(_state()),
        )

        assert len(seen) == 2
        assert sleep.calls == [8.0, 8.0]
        assert result.access_token == token
        assert result.refresh_token == "rt-1"
        assert result.tenant == "acme"
        assert result.domain == "acme.us.example.com"
        form = _form(seen[0])
        assert form == {
            "grant_type": "urn:ietf:params:oauth:grant-type:device_code",
            "client_id": "cli-client",
            "device_code": "dev-123",
        }

    def test_slow_down_increases_interval(self, make_jwt: Callable[..., str]) -> None:
        sleep = FakeSleep()
        transport = _scripted(
            [
                httpx.Response(400, json={"error": "slow_down"}),
                httpx.Response(200, json={"access_token": make_jwt(), "expires_in": 60}),
            ],
            [],
        )
        _run(
            lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=sleep),
            transport,
            lambda a: a.poll_for_token(_state(interval=2)),
        )
        assert sleep.calls == [5.0, 6.0]

    def test_terminal_error_description_verbatim(self) -> None:
        transport = _scripted(
            [
                httpx.Response(
                    403,
                    json={"error": "access_denied", "error_description": "User cancelled the login."},
                )
            ],
            [],
        )
        with pytest.raises(ProtocolError) as exc_info:
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=FakeSleep()),
                transport,
                lambda a: a.poll_for_token(_state()),
            )
        assert str(exc_info.value) == "User cancelled the login."
        assert exc_info.value.error == "access_denied"

    def test_expired_token_error_is_terminal(self) -> None:
        seen: list[httpx.Request] = []
        transport = _scripted(
            [httpx.Response(403, json={"error": "expired_token", "error_description": "Code expired"})],
            seen,
        )
        with pytest.raises(ProtocolError, match="Code expired"):
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=FakeSleep()),
                transport,
                lambda a: a.poll_for_token(_state()),
            )
        assert len(seen) == 1

    def test_budget_exhausted(self) -> None:
        seen: list[httpx.Request] = []
        sleep = FakeSleep()

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(403, json={"error": "authorization_pending"})

        with pytest.raises(DeviceCodeExpiredError):
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=sleep),
                httpx.MockTransport(handler),
                lambda a: a.poll_for_token(_state(expires_in=20, interval=5)),
            )
        assert sleep.calls == [8.0, 8.0]
        assert len(seen) == 2

    def test_non_json_error_response(self) -> None:
        transport = _scripted([httpx.Response(502, text="Bad Gateway")], [])
        with pytest.raises(TransportError, match="502"):
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=FakeSleep()),
                transport,
                lambda a: a.poll_for_token(_state()),
            )

    def test_success_without_management_audience(self, make_jwt: Callable[..., str]) -> None:
        token = make_jwt(aud="https://acme.us.example.com/userinfo")
        transport = _scripted([httpx.Response(200, json={"access_token": token})], [])
        with pytest.raises(AudienceNotFoundError):
            _run(
                lambda c: DeviceAuthenticator(CREDENTIALS, http_client=c, sleep=FakeSleep()),
                transport,
                lambda a: a.poll_for_token(_state()),
            )

    def test_cancel_between_ticks(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(403, json={"error": "authorization_pending"})

        async def _main() -> None:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                authenticator = DeviceAuthenticator(CREDENTIALS, http_client=client)
                await asyncio.wait_for(
                    authenticator.poll_for_token(_state(interval=60)), timeout=0.05
                )

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(_main())
        assert requests == []

    def test_cancel_mid_request(self) -> None:
        started = []

        async def handler(request: httpx.Request) -> httpx.Response:
            started.append(request)
            await asyncio.sleep(30)
            return httpx.Response(403, json={"error": "authorization_pending"})

        async def _main() -> None:
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                authenticator = DeviceAuthenticator(CREDENTIALS, http_client=client, sleep=FakeSleep())
                await asyncio.wait_for(authenticator.poll_for_token(_state()), timeout=0.05)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(_main())
        assert len(started) == 1

    def test_errors_are_auth_errors(self) -> None:
        assert issubclass(ProtocolError, AuthError)
        assert issubclass(DeviceCodeExpiredError, AuthError)
        assert issubclass(AudienceNotFoundError, DecodeError)


# -------------------------------------------------------------------------
# JWT helpers
# -------------------------------------------------------------------------


class TestParseTenant:
    def test_audience_list(self, make_jwt: Callable[..., str]) -> None:
        assert parse_tenant(make_jwt()) == ("acme", "acme.us.example.com")

    def test_audience_string(self, make_jwt: Callable[..., str]) -> None:
        token = make_jwt(aud="https://travel0.eu.example.com/api/v2/")
        assert parse_tenant(token) == ("travel0", "travel0.eu.example.com")

    def test_first_matching_audience_wins(self, make_jwt: Callable[..., str]) -> None:
        token = make_jwt(
            aud=[
                "https://first.example.com/userinfo",
                "https://second.example.com/api/v2/",
                "https://third.example.com/api/v2/",
            ]
        )
        assert parse_tenant(token) == ("second", "second.example.com")

    def test_no_management_audience(self, make_jwt: Callable[..., str]) -> None:
        token = make_jwt(aud=["https://acme.example.com/userinfo"])
        with pytest.raises(AudienceNotFoundError, match="audience not found for /api/v2/"):
            parse_tenant(token)

    def test_missing_audience(self, make_jwt: Callable[..., str]) -> None:
        token = make_jwt(aud=[])
        with pytest.raises(AudienceNotFoundError):
            parse_tenant(token)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d"])
    def test_wrong_segment_count(self, token: str) -> None:
        with pytest.raises(DecodeError):
            parse_tenant(token)

    def test_payload_not_json(self) -> None:
        with pytest.raises(DecodeError):
            decode_jwt_claims("eyJhbGciOiJub25lIn0.bm90LWpzb24.sig")

    def test_claims_decoded(self, make_jwt: Callable[..., str]) -> None:
        claims = decode_jwt_claims(make_jwt(sub="user|42"))
        assert claims["sub"] == "user|42"
        assert json.dumps(claims)


class TestEnsureAudienceUrl:
    @pytest.mark.parametrize(
        ("domain", "expected"),
        [
            ("acme.us.example.com", "https://acme.us.example.com/api/v2/"),
            ("https://acme.us.example.com", "https://acme.us.example.com/api/v2/"),
            ("https://acme.us.example.com/", "https://acme.us.example.com/api/v2/"),
            ("http://acme.us.example.com", "https://acme.us.example.com/api/v2/"),
        ],
    )
    def test_normalises(self, domain: str, expected: str) -> None:
        assert ensure_audience_url(domain) == expected

    def test_empty_uses_default_audience(self) -> None:
        assert ensure_audience_url("").endswith("/api/v2/")
        assert "*" in ensure_audience_url("")
