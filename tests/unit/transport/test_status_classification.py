"""
Tests for response classification and TLS context construction.
"""

import pytest

from logship.config import TLSSettings
from logship.core.exceptions import ConfigError, PermanentTransportError, RetryableTransportError
from logship.core.transport import DeliveryResult, build_ssl_context, classify_status


class TestClassifyStatus:
    """2xx succeeds, 5xx/408/429 retry, other 4xx are permanent."""

    @pytest.mark.parametrize("status", [200, 204])
    def test_success(self, status: int) -> None:
        assert classify_status(status) is None

    @pytest.mark.parametrize("status", [500, 502, 503, 408, 429])
    def test_retryable(self, status: int) -> None:
        error = classify_status(status, "busy")
        assert isinstance(error, RetryableTransportError)
        assert error.retryable is True
        assert error.status == status

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 413])
    def test_permanent(self, status: int) -> None:
        error = classify_status(status)
        assert isinstance(error, PermanentTransportError)
        assert error.retryable is False
        assert error.error_code == "transport_permanent"

    def test_body_is_truncated_in_message(self) -> None:
        error = classify_status(400, "x" * 1000)
        assert error is not None
        assert len(str(error)) < 300


class TestDeliveryResult:
    def test_empty_result(self) -> None:
        result = DeliveryResult.empty(7)
        assert result.success is True
        assert result.entries == 0
        assert result.attempts == 0
        assert result.generation == 7


class TestSSLContext:
    """TLS material loading."""

    def test_defaults_use_library_verification(self) -> None:
        assert build_ssl_context(TLSSettings()) is None

    def test_verification_can_be_disabled(self) -> None:
        context = build_ssl_context(TLSSettings(verify=False))
        assert context is not None
        assert context.check_hostname is False

    def test_missing_certificate_is_config_error(self, tmp_path) -> None:
        tls = TLSSettings(client_cert_path=tmp_path / "missing.pem")
        with pytest.raises(ConfigError):
            build_ssl_context(tls)
