"""Tests for date token resolution and pattern validation."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from dropwatch.tokens import (
    SUPPORTED_TOKENS,
    TokenResolver,
    contains_tokens,
    invalid_tokens,
    resolve,
    validate_patterns,
)


class TestResolve:
    """Tests for resolve()."""

    def test_compact_date(self):
        """Test {yyyy}{mm}{dd} resolves to a compact date."""
        at = datetime(2025, 1, 24, tzinfo=timezone.utc)
        assert resolve("{yyyy}{mm}{dd}", at, "UTC") == "20250124"

    def test_year_and_month_at_year_end(self):
        """Test year/month resolution on December 31st."""
        at = datetime(2025, 12, 31, tzinfo=timezone.utc)
        assert resolve("{yyyy}/{mm}", at, "UTC") == "2025/12"

    def test_composite_tokens(self):
        """Test the composite tokens."""
        at = datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc)
        assert resolve("{yyyymmdd}", at) == "20250307"
        assert resolve("{yymmdd}", at) == "250307"
        assert resolve("{yyyy-mm-dd}", at) == "2025-03-07"
        assert resolve("{yy}", at) == "25"

    def test_case_insensitive(self):
        """Test tokens match regardless of case."""
        at = datetime(2025, 1, 24, tzinfo=timezone.utc)
        assert resolve("{YYYY}-{Mm}-{dD}", at) == "2025-01-24"

    def test_unknown_token_left_untouched(self):
        """Test unrecognised brace groups stay in the output."""
        at = datetime(2025, 1, 24, tzinfo=timezone.utc)
        assert resolve("/data/{region}/{yyyy}", at) == "/data/{region}/2025"

    def test_template_without_tokens(self):
        """Test a plain template is returned unchanged."""
        at = datetime(2025, 1, 24, tzinfo=timezone.utc)
        assert resolve("/static/path.csv", at) == "/static/path.csv"

    def test_deterministic(self):
        """Test resolving twice with identical inputs yields identical output."""
        at = datetime(2025, 6, 1, 23, 59, 59, tzinfo=timezone.utc)
        template = "/files/{yyyy}/{mm}/{dd}/data_{yyyymmdd}.csv"
        assert resolve(template, at, "Asia/Tokyo") == resolve(template, at, "Asia/Tokyo")

    def test_date_observed_in_timezone(self):
        """Test the local date in the zone is used, not the UTC date."""
        at = datetime(2025, 1, 24, 23, 30, tzinfo=timezone.utc)
        assert resolve("{yyyymmdd}", at, "UTC") == "20250124"
        assert resolve("{yyyymmdd}", at, "Asia/Tokyo") == "20250125"
        assert resolve("{yyyymmdd}", at, "America/Los_Angeles") == "20250124"

    def test_month_boundary_in_timezone(self):
        """Test a UTC instant late on the last day rolls to next month eastward."""
        at = datetime(2025, 1, 31, 22, 0, tzinfo=timezone.utc)
        assert resolve("{yyyy}/{mm}", at, "Europe/Helsinki") == "2025/02"

    def test_leap_day(self):
        """Test February 29th resolves in a leap year."""
        at = datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert resolve("{yyyy}{mm}{dd}", at, "UTC") == "20240229"

    def test_leap_day_rolls_to_march_in_timezone(self):
        """Test a late February 29th UTC instant is March 1st in Tokyo."""
        at = datetime(2024, 2, 29, 23, 30, tzinfo=timezone.utc)
        assert resolve("{yyyy}{mm}{dd}", at, "Asia/Tokyo") == "20240301"
        assert resolve("{yyyy}{mm}{dd}", at, "UTC") == "20240229"

    def test_naive_instant_taken_as_utc(self):
        """Test naive datetimes are treated as UTC."""
        assert resolve("{yyyymmdd}", datetime(2025, 1, 24, 23, 30), "Asia/Tokyo") == "20250125"

    def test_accepts_tzinfo(self):
        """Test a tzinfo object is accepted in place of a zone name."""
        at = datetime(2025, 1, 24, 23, 30, tzinfo=timezone.utc)
        assert resolve("{dd}", at, ZoneInfo("Asia/Tokyo")) == "25"


class TestTokenResolver:
    """Tests for the TokenResolver wrapper."""

    def test_resolve_pair(self):
        """Test path and name are resolved at the same instant."""
        at = datetime(2025, 1, 24, 2, 0, 1, tzinfo=timezone.utc)
        path, name = TokenResolver().resolve_pair(
            "/files/{yyyy}/{mm}/{dd}", "data_{yyyymmdd}.csv", at, "UTC"
        )
        assert path == "/files/2025/01/24"
        assert name == "data_20250124.csv"


class TestTokenInspection:
    """Tests for contains_tokens() and invalid_tokens()."""

    def test_supported_tokens_listed(self):
        """Test every documented token is advertised."""
        assert set(SUPPORTED_TOKENS) == {
            "{yyyy}", "{yy}", "{mm}", "{dd}", "{yyyymmdd}", "{yymmdd}", "{yyyy-mm-dd}",
        }

    def test_contains_tokens(self):
        """Test detection of recognised tokens."""
        assert contains_tokens("/files/{yyyy}") is True
        assert contains_tokens("/files/{YYYY}") is True
        assert contains_tokens("/files/{region}") is False
        assert contains_tokens("") is False
        assert contains_tokens(None) is False

    def test_invalid_tokens(self):
        """Test unrecognised brace groups are reported once each."""
        assert invalid_tokens("/{region}/{yyyy}/{region}/{hh}") == ["{region}", "{hh}"]
        assert invalid_tokens("/{yyyy}/{mm}") == []
        assert invalid_tokens(None) == []


class TestValidatePatterns:
    """Tests for validate_patterns()."""

    def test_valid_patterns(self):
        """Test tokens in path and name are accepted."""
        result = validate_patterns("ftp.example.com", "/files/{yyyy}", "data_{yyyymmdd}.csv")
        assert result.is_valid is True
        assert result.error is None

    def test_tokens_in_host_rejected(self):
        """Test the host may not carry tokens."""
        result = validate_patterns("files-{yyyy}.example.com", "/files", "data.csv")
        assert result.is_valid is False
        assert "host" in result.error.lower()

    def test_unknown_token_rejected(self):
        """Test unknown brace groups make the patterns invalid."""
        result = validate_patterns("ftp.example.com", "/files/{region}", "data.csv")
        assert result.is_valid is False
        assert "{region}" in result.error

    @pytest.mark.parametrize("path, name, label", [
        ("/files/{yyyy}/{x}", "data.csv", "path"),
        ("/files", "data_{date}.csv", "filename"),
    ])
    def test_error_names_offending_pattern(self, path, name, label):
        """Test the error message names the pattern with the bad token."""
        result = validate_patterns("ftp.example.com", path, name)
        assert result.is_valid is False
        assert label in result.error.lower()
