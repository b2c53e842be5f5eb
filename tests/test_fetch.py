"""
Tests for the fetch module.

Tests cover:
- Status page URL construction
- Successful page fetching
- HTTP error handling
- Timeout and connection error handling
- Session configuration
"""

import pytest
from unittest.mock import Mock, patch
import requests

from timus_notifier.fetch import (
    DEFAULT_TIMEOUT,
    FetchError,
    FetchResult,
    build_status_url,
    create_session,
    fetch_status_page,
    require_content,
)


class TestBuildStatusUrl:
    """Tests for status page URL construction."""

    def test_default_parameters(self):
        url = build_status_url("123456")

        assert url == "https://timus.online/status.aspx?author=123456&count=10&locale=ru"

    def test_custom_count(self):
        url = build_status_url("42", count=50)

        assert "count=50" in url
        assert "author=42" in url


class TestCreateSession:
    """Tests for session creation."""

    def test_session_has_headers(self):
        session = create_session()

        assert "User-Agent" in session.headers
        assert "Accept" in session.headers

    def test_session_has_retry_adapter(self):
        session = create_session(max_retries=3)

        assert "http://" in session.adapters
        assert "https://" in session.adapters

    def test_post_is_not_retried(self):
        """Chat deliveries must never be repeated by the transport."""
        session = create_session(max_retries=5)

        retries = session.get_adapter("https://api.telegram.org").max_retries

        assert retries.total == 5
        assert "POST" not in retries.allowed_methods


class TestFetchStatusPage:
    """Tests for fetching the status page."""

    def test_successful_fetch(self):
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.text = "<html><body>Test content</body></html>"

        mock_session = Mock()
        mock_session.get.return_value = mock_response

        result = fetch_status_page("123456", session=mock_session)

        assert result.success is True
        assert result.html_content == "<html><body>Test content</body></html>"
        assert result.source_url == build_status_url("123456")
        assert result.status_code == 200
        assert result.error_message is None
        mock_session.get.assert_called_once_with(build_status_url("123456"), timeout=DEFAULT_TIMEOUT)
        # A session passed in by the caller stays open
        mock_session.close.assert_not_called()

    @pytest.mark.parametrize("status_code", [404, 500, 503])
    def test_http_error(self, status_code):
        mock_response = Mock()
        mock_response.status_code = status_code

        mock_session = Mock()
        mock_session.get.return_value = mock_response

        result = fetch_status_page("123456", session=mock_session)

        assert result.success is False
        assert result.html_content is None
        assert result.status_code == status_code
        assert str(status_code) in result.error_message

    def test_timeout_handling(self):
        mock_session = Mock()
        mock_session.get.side_effect = requests.exceptions.Timeout("Connection timed out")

        result = fetch_status_page("123456", session=mock_session)

        assert result.success is False
        assert "timeout" in result.error_message.lower()

    def test_connection_error_handling(self):
        mock_session = Mock()
        mock_session.get.side_effect = requests.exceptions.ConnectionError("DNS lookup failed")

        result = fetch_status_page("123456", session=mock_session)

        assert result.success is False
        assert "connection" in result.error_message.lower()

    @patch("timus_notifier.fetch.create_session")
    def test_own_session_closed(self, mock_create_session):
        mock_session = Mock()
        mock_session.get.side_effect = requests.exceptions.RequestException("boom")
        mock_create_session.return_value = mock_session

        result = fetch_status_page("123456")

        assert result.success is False
        mock_session.close.assert_called_once()


class TestRequireContent:
    """Tests for turning a failed fetch into an error."""

    def test_success_returns_content(self):
        result = FetchResult(source_url="u", html_content="<html/>", success=True, status_code=200)

        assert require_content(result) == "<html/>"

    def test_failure_raises(self):
        result = FetchResult(
            source_url="u",
            html_content=None,
            success=False,
            error_message="HTTP 503",
            status_code=503
        )

        with pytest.raises(FetchError, match="HTTP 503") as exc_info:
            require_content(result)

        assert exc_info.value.status_code == 503
