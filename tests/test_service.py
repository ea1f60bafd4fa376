"""
Tests for the service module.

Tests cover:
- Running the core on a raw response
- Building the payload for a date
- Mapping fetch failures and missing content onto exceptions
- Environment-driven defaults
"""

import os
import re
from unittest.mock import Mock, patch

import pytest

from qt_proxy.encoding import ResolvedEncoding
from qt_proxy.fetch import FetchResult
from qt_proxy.service import (
    FragmentNotFoundError,
    InvalidDateError,
    UpstreamFetchError,
    get_base_url,
    get_default_version,
    get_devotional,
    process_response,
    today_kst,
)


PAGE = (
    "<html><head><meta charset=\"euc-kr\"></head><body>"
    "<div class=\"font-size\"><h1><span>에스겔 22:17~22</span><em>풀무 불 속의 찌꺼기</em></h1>"
    "<div class=\"bible\"><p class=\"title\">이스라엘의 찌꺼기</p>"
    "<table><tr><td>17</td><td>여호와의 말씀이 또 내게 임하여</td></tr></table>"
    "<p class=\"title\"><a href=\"/qt/more.asp\">더보기</a></p>"
    "<div class=\"song\">찬송</div></div></div>"
    "</body></html>"
)

SOURCE_URL = "https://www.duranno.com/qt/view/bible.asp?qtDate=2025-03-14&d=k"


def _ok(body=PAGE.encode("euc-kr"), content_type="text/html"):
    return FetchResult(SOURCE_URL, body, True, content_type=content_type, status_code=200)


def _dated_page_missing_session():
    """Session where the dated page is 404 and the undated page serves today's reading."""
    def get(url, timeout=None):
        response = Mock()
        response.headers = {"Content-Type": "text/html"}
        if "qtDate=" in url:
            response.status_code = 404
            response.content = b""
        else:
            response.status_code = 200
            response.content = PAGE.encode("euc-kr")
        return response

    session = Mock()
    session.get.side_effect = get
    return session


class TestProcessResponse:
    """Tests for running the core on a response body."""

    def test_legacy_page(self):
        """Test an undeclared-in-header legacy Korean page."""
        result, encoding = process_response("text/html", PAGE.encode("euc-kr"))

        assert encoding is ResolvedEncoding.LEGACY_KOREAN
        assert result.metadata.book == "에스겔"
        assert "여호와의 말씀이" in result.fragment

    def test_utf8_page(self):
        """Test a UTF-8 page without any declaration."""
        page = PAGE.replace("<meta charset=\"euc-kr\">", "")

        result, encoding = process_response(None, page.encode("utf-8"))

        assert encoding is ResolvedEncoding.UTF8
        assert result.metadata.range == "22:17–22"


class TestGetDevotional:
    """Tests for the payload builder."""

    @patch("qt_proxy.service.fetch_devotional_page")
    def test_payload(self, mock_fetch):
        """Test the payload shape for a successful extraction."""
        mock_fetch.return_value = _ok()

        payload = get_devotional("2025-03-14", "k", absolutize=False)

        assert payload["date"] == "2025-03-14"
        assert payload["version"] == "k"
        assert payload["book"] == "에스겔"
        assert payload["range"] == "22:17–22"
        assert payload["subtitle"] == "풀무 불 속의 찌꺼기"
        assert payload["title"] == "에스겔 22:17–22 — 풀무 불 속의 찌꺼기"
        assert payload["source"] == SOURCE_URL
        assert payload["encoding"] == "cp949"
        assert "찬송" not in payload["html"]
        assert "fragment" not in payload

    @patch("qt_proxy.service.fetch_devotional_page")
    def test_links_absolutized(self, mock_fetch):
        """Test that links are rewritten against the source page when enabled."""
        mock_fetch.return_value = _ok()

        payload = get_devotional("2025-03-14", "k", absolutize=True)

        assert "href=\"https://www.duranno.com/qt/more.asp\"" in payload["html"]

    @patch("qt_proxy.service.fetch_devotional_page")
    def test_links_left_relative_by_default(self, mock_fetch):
        """Test that links stay relative without the flag."""
        mock_fetch.return_value = _ok()

        with patch.dict(os.environ, {"QT_ABSOLUTIZE_LINKS": ""}):
            payload = get_devotional("2025-03-14", "k")

        assert "href=\"/qt/more.asp\"" in payload["html"]

    @patch("qt_proxy.service.fetch_devotional_page")
    def test_upstream_failure(self, mock_fetch):
        """Test that a failed fetch raises UpstreamFetchError."""
        mock_fetch.return_value = FetchResult(
            SOURCE_URL, None, False, error_message="HTTP 503", status_code=503
        )

        with pytest.raises(UpstreamFetchError) as exc_info:
            get_devotional("2025-03-14", "k")

        assert exc_info.value.status_code == 503
        assert exc_info.value.source_url == SOURCE_URL

    @patch("qt_proxy.service.fetch_devotional_page")
    def test_fragment_not_found(self, mock_fetch):
        """Test that a page without content raises FragmentNotFoundError."""
        mock_fetch.return_value = _ok(body="<html><body><h1>점검 중</h1></body></html>".encode("utf-8"))

        with pytest.raises(FragmentNotFoundError) as exc_info:
            get_devotional("2025-03-14", "k")

        assert exc_info.value.source_url == SOURCE_URL

    def test_invalid_date(self):
        """Test that a malformed date is rejected before fetching."""
        with patch("qt_proxy.service.fetch_devotional_page") as mock_fetch:
            with pytest.raises(InvalidDateError):
                get_devotional("14/03/2025")

            mock_fetch.assert_not_called()

    @patch("qt_proxy.service.today_kst", return_value="2025-03-14")
    @patch("qt_proxy.service.fetch_devotional_page")
    def test_defaults_to_today(self, mock_fetch, mock_today):
        """Test that today's date is used when none is given."""
        mock_fetch.return_value = _ok()

        payload = get_devotional(None, "w", absolutize=False)

        assert payload["date"] == "2025-03-14"
        assert payload["version"] == "w"
        assert mock_fetch.call_args[0][:2] == ("2025-03-14", "w")
        assert mock_fetch.call_args[1]["allow_undated"] is True

    @patch("qt_proxy.service.today_kst", return_value="2025-03-14")
    def test_other_day_never_uses_todays_page(self, mock_today):
        """Test that a missing dated page is an error rather than today's reading."""
        session = _dated_page_missing_session()

        with pytest.raises(UpstreamFetchError) as exc_info:
            get_devotional("2001-01-01", "k", session=session, absolutize=False)

        assert exc_info.value.status_code == 404
        assert "qtDate=2001-01-01" in exc_info.value.source_url
        assert session.get.call_count == 1

    @patch("qt_proxy.service.today_kst", return_value="2025-03-14")
    def test_today_falls_back_to_undated_page(self, mock_today):
        """Test that today's request may use the undated page."""
        session = _dated_page_missing_session()

        with patch.dict(os.environ, {"QT_BASE_URL": ""}):
            payload = get_devotional("2025-03-14", "k", session=session, absolutize=False)

        assert payload["date"] == "2025-03-14"
        assert payload["source"].endswith("bible.asp?d=k")
        assert session.get.call_count == 2


class TestSettings:
    """Tests for environment-driven settings."""

    def test_today_format(self):
        """Test that today's date has the YYYY-MM-DD shape."""
        assert re.match(r"^\d{4}-\d{2}-\d{2}$", today_kst("Asia/Seoul"))

    def test_default_version_from_env(self):
        """Test QT_VERSION handling."""
        with patch.dict(os.environ, {"QT_VERSION": "w"}):
            assert get_default_version() == "w"
        with patch.dict(os.environ, {"QT_VERSION": "zz"}):
            assert get_default_version() == "k"

    def test_base_url_from_env(self):
        """Test QT_BASE_URL handling."""
        with patch.dict(os.environ, {"QT_BASE_URL": "https://mirror.example/qt"}):
            assert get_base_url() == "https://mirror.example/qt"
        with patch.dict(os.environ, {"QT_BASE_URL": ""}):
            assert get_base_url().startswith("https://www.duranno.com/")
