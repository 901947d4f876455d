"""
Unit tests for http_utils module.

Covers how collector responses are classified during delivery and the
connectivity probe.
"""

import pytest

from flow_log_pipeline.utils.http_utils import (
    is_auth_failure_status,
    is_probe_ok_status,
    is_retryable_status,
    is_success_status,
)


class TestIsSuccessStatus:
    """Tests for is_success_status function."""

    @pytest.mark.parametrize("status", [200, 201, 202, 204])
    def test_2xx_is_success(self, status):
        """Any 2xx accepts the batch."""
        assert is_success_status(status) is True

    @pytest.mark.parametrize("status", [None, 301, 404, 405, 500])
    def test_others_not_success(self, status):
        """Everything else is not success."""
        assert is_success_status(status) is False


class TestIsRetryableStatus:
    """Tests for is_retryable_status function."""

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 599])
    def test_transient_statuses(self, status):
        """408, 429 and every 5xx are retried."""
        assert is_retryable_status(status) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 413, 422])
    def test_terminal_client_errors(self, status):
        """Other 4xx are terminal."""
        assert is_retryable_status(status) is False

    @pytest.mark.parametrize("status", [None, 200, 204, 301])
    def test_non_errors_not_retried(self, status):
        """Successful or missing statuses are never retried."""
        assert is_retryable_status(status) is False


class TestProbeStatuses:
    """Tests for the connectivity probe helpers."""

    @pytest.mark.parametrize("status", [200, 204, 405])
    def test_probe_ok(self, status):
        """2xx and 405 mean the endpoint is usable."""
        assert is_probe_ok_status(status) is True

    @pytest.mark.parametrize("status", [None, 401, 404, 500])
    def test_probe_not_ok(self, status):
        """Missing endpoints, auth failures and server errors are not."""
        assert is_probe_ok_status(status) is False

    @pytest.mark.parametrize("status,expected", [(401, True), (403, True), (404, False), (None, False)])
    def test_auth_failure(self, status, expected):
        """Only 401 and 403 are credential rejections."""
        assert is_auth_failure_status(status) is expected
