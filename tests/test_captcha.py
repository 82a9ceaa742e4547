"""
CAPTCHA Verifier Tests
======================
Site-verify handling against a mocked HTTP transport.
"""

import httpx
import pytest

from authkit_core.captcha import CaptchaConfig, CaptchaProvider, CaptchaVerifier
from authkit_core.errors import ValidationError

VERIFY_URL = "https://captcha.test/siteverify"


def make_verifier(handler, **kwargs):
    config = CaptchaConfig(
        provider=CaptchaProvider.HCAPTCHA,
        secret_key="captcha-secret",
        verify_url=VERIFY_URL,
        retry_wait_multiplier=0,
        **kwargs,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CaptchaVerifier(config, client=client)


class TestCaptchaVerifier:
    """Tests for CAPTCHA verification outcomes."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "hostname": "app.example.com"})

        verifier = make_verifier(handler)
        result = await verifier.verify("client-token", remote_ip="203.0.113.7")
        await verifier.aclose()

        assert result.success is True
        assert result.hostname == "app.example.com"
        assert result.error is None
        body = seen[0].content.decode()
        assert "response=client-token" in body
        assert "remoteip=203.0.113.7" in body
        assert str(seen[0].url) == VERIFY_URL

    @pytest.mark.asyncio
    async def test_provider_rejection(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error-codes": ["invalid-input-response"]})

        result = await make_verifier(handler).verify("bad-token")

        assert result.success is False
        assert result.error == "invalid-input-response"

    @pytest.mark.asyncio
    async def test_low_score_fails(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "score": 0.2})

        result = await make_verifier(handler, min_score=0.5).verify("token")

        assert result.success is False
        assert result.score == 0.2

    @pytest.mark.asyncio
    async def test_server_error_fails_closed(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        result = await make_verifier(handler).verify("token")

        assert result.success is False
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_unparseable_body_fails_closed(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        result = await make_verifier(handler).verify("token")

        assert result.success is False

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"success": True})

        result = await make_verifier(handler, max_attempts=3).verify("token")

        assert result.success is True
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_unreachable_fails_closed(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_verifier(handler, max_attempts=2).verify("token")

        assert result.success is False
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_empty_token(self):
        verifier = make_verifier(lambda request: httpx.Response(200, json={"success": True}))

        with pytest.raises(ValidationError):
            await verifier.verify("")

    def test_requires_captcha(self):
        verifier = make_verifier(lambda request: httpx.Response(200))

        assert verifier.requires_captcha(None) is True
        assert verifier.requires_captcha(0.3) is True
        assert verifier.requires_captcha(0.9) is False

    def test_default_urls(self):
        config = CaptchaConfig(provider=CaptchaProvider.RECAPTCHA, secret_key="s")

        assert config.url == "https://www.google.com/recaptcha/api/siteverify"


class TestFlowStepUp:
    """Tests for CAPTCHA step-up inside the authentication flow."""

    @pytest.mark.asyncio
    async def test_valid_captcha_lets_challenged_request_through(self, flow, now):
        from authkit_core.abuse_detector import AbuseDetector, AbusePolicy
        from authkit_core.flow import AuthMethod, StartRequest
        from authkit_core.otp.models import ChallengeChannel, ChallengeIntent
        from authkit_core.stores.memory import InMemoryCounterStore

        flow.abuse_detector = AbuseDetector(
            InMemoryCounterStore(),
            AbusePolicy(identifier_velocity_threshold=0, ip_velocity_threshold=0),
        )
        flow.captcha = make_verifier(lambda request: httpx.Response(200, json={"success": True}))

        started = await flow.start(
            StartRequest(
                identifier="+14155551234",
                channel=ChallengeChannel.SMS,
                intent=ChallengeIntent.LOGIN,
                ip="203.0.113.7",
                captcha_token="client-token",
            ),
            now,
        )

        assert started.method == AuthMethod.OTP
        assert started.risk_score == 0.5

    @pytest.mark.asyncio
    async def test_failed_captcha_rejected(self, flow, now):
        from authkit_core.abuse_detector import AbuseDetector, AbusePolicy
        from authkit_core.errors import CaptchaRequired
        from authkit_core.flow import StartRequest
        from authkit_core.otp.models import ChallengeChannel, ChallengeIntent
        from authkit_core.stores.memory import InMemoryCounterStore

        flow.abuse_detector = AbuseDetector(
            InMemoryCounterStore(),
            AbusePolicy(identifier_velocity_threshold=0, ip_velocity_threshold=0),
        )
        flow.captcha = make_verifier(lambda request: httpx.Response(200, json={"success": False}))

        with pytest.raises(CaptchaRequired):
            await flow.start(
                StartRequest(
                    identifier="+14155551234",
                    channel=ChallengeChannel.SMS,
                    intent=ChallengeIntent.LOGIN,
                    ip="203.0.113.7",
                    captcha_token="client-token",
                ),
                now,
            )
