"""
Tests for the main module.

Tests cover:
- Target date and output path selection from the environment
- Exit codes for success, fetch failure, missing content and bad config
- Dry run mode
"""

import json
import os
from unittest.mock import patch

from qt_proxy.main import (
    DEFAULT_OUTPUT_PATH,
    EXIT_ENV_ERROR,
    EXIT_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_SUCCESS,
    get_output_filepath,
    get_target_date,
    main,
    run_pipeline,
)
from qt_proxy.service import FragmentNotFoundError, UpstreamFetchError


PAYLOAD = {
    "date": "2025-03-14",
    "version": "k",
    "book": "에스겔",
    "range": "22:17–22",
    "subtitle": "",
    "title": "에스겔 22:17–22",
    "html": "<p class=\"title\">이스라엘의 찌꺼기</p>",
    "source": "https://www.duranno.com/qt/view/bible.asp?qtDate=2025-03-14&d=k",
    "encoding": "cp949",
}


class TestGetTargetDate:
    """Tests for QT_DATE handling."""

    def test_explicit_date(self):
        """Test that a valid QT_DATE is used."""
        with patch.dict(os.environ, {"QT_DATE": "2025-03-14"}):
            assert get_target_date() == "2025-03-14"

    def test_invalid_date(self):
        """Test that a malformed QT_DATE yields None."""
        with patch.dict(os.environ, {"QT_DATE": "yesterday"}):
            assert get_target_date() is None

    @patch("qt_proxy.main.today_kst", return_value="2025-03-15")
    def test_defaults_to_today(self, mock_today):
        """Test that today's date is used when QT_DATE is unset."""
        with patch.dict(os.environ, {"QT_DATE": ""}):
            assert get_target_date() == "2025-03-15"


class TestGetOutputFilepath:
    """Tests for OUTPUT_PATH handling."""

    def test_custom_path(self):
        """Test that OUTPUT_PATH is used when set."""
        with patch.dict(os.environ, {"OUTPUT_PATH": "/tmp/qt.json"}):
            assert get_output_filepath() == "/tmp/qt.json"

    def test_default_path(self):
        """Test the default output path."""
        with patch.dict(os.environ, {"OUTPUT_PATH": ""}):
            assert get_output_filepath() == DEFAULT_OUTPUT_PATH


class TestRunPipeline:
    """Tests for a complete run."""

    @patch("qt_proxy.main.get_devotional", return_value=PAYLOAD)
    def test_success_writes_payload(self, mock_get, tmp_path):
        """Test that a successful run writes the payload."""
        output = tmp_path / "out" / "today.json"
        env = {"QT_DATE": "2025-03-14", "OUTPUT_PATH": str(output)}

        with patch.dict(os.environ, env):
            exit_code = run_pipeline()

        assert exit_code == EXIT_SUCCESS
        with open(output, encoding="utf-8") as f:
            assert json.load(f) == PAYLOAD

    @patch("qt_proxy.main.get_devotional", return_value=PAYLOAD)
    def test_dry_run_skips_write(self, mock_get, tmp_path):
        """Test that a dry run does not write anything."""
        output = tmp_path / "today.json"
        env = {"QT_DATE": "2025-03-14", "OUTPUT_PATH": str(output)}

        with patch.dict(os.environ, env):
            exit_code = run_pipeline(dry_run=True)

        assert exit_code == EXIT_SUCCESS
        assert not output.exists()

    @patch("qt_proxy.main.get_devotional")
    def test_upstream_failure(self, mock_get):
        """Test that a fetch failure maps to EXIT_FAILURE."""
        mock_get.side_effect = UpstreamFetchError("HTTP 503", status_code=503)

        with patch.dict(os.environ, {"QT_DATE": "2025-03-14"}):
            assert run_pipeline(dry_run=True) == EXIT_FAILURE

    @patch("qt_proxy.main.get_devotional")
    def test_fragment_not_found(self, mock_get):
        """Test that missing content maps to EXIT_NOT_FOUND."""
        mock_get.side_effect = FragmentNotFoundError("bible fragment not found")

        with patch.dict(os.environ, {"QT_DATE": "2025-03-14"}):
            assert run_pipeline(dry_run=True) == EXIT_NOT_FOUND

    @patch("qt_proxy.main.get_devotional")
    def test_invalid_date_is_env_error(self, mock_get):
        """Test that a malformed QT_DATE maps to EXIT_ENV_ERROR."""
        with patch.dict(os.environ, {"QT_DATE": "14-03-2025"}):
            assert run_pipeline(dry_run=True) == EXIT_ENV_ERROR

        mock_get.assert_not_called()


class TestMain:
    """Tests for the entry point."""

    @patch("qt_proxy.main.run_pipeline", return_value=EXIT_SUCCESS)
    def test_dry_run_flag(self, mock_run):
        """Test that DRY_RUN is passed through."""
        with patch.dict(os.environ, {"DRY_RUN": "true"}):
            assert main() == EXIT_SUCCESS

        mock_run.assert_called_once_with(dry_run=True)

    @patch("qt_proxy.main.run_pipeline", side_effect=RuntimeError("boom"))
    def test_unexpected_error(self, mock_run):
        """Test that unexpected errors become EXIT_FAILURE."""
        assert main() == EXIT_FAILURE
