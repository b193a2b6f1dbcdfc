"""
Unit tests for expiry status classification.
"""

from datetime import date, timedelta

import pytest

from status_classifier import (
    ExpiryStatus,
    ReportType,
    classify,
    derive_expiry,
    matches_report_type,
    parse_report_type,
)

TODAY = date(2025, 6, 1)


class TestClassify:

    def test_no_expiry_is_current(self):
        assert classify(None, TODAY) == ExpiryStatus.CURRENT

    def test_yesterday_is_expired(self):
        assert classify(TODAY - timedelta(days=1), TODAY) == ExpiryStatus.EXPIRED

    def test_today_is_expiring_soon(self):
        assert classify(TODAY, TODAY) == ExpiryStatus.EXPIRING_SOON

    def test_window_end_is_inclusive(self):
        assert classify(TODAY + timedelta(days=90), TODAY) == ExpiryStatus.EXPIRING_SOON

    def test_after_window_is_current(self):
        assert classify(TODAY + timedelta(days=91), TODAY) == ExpiryStatus.CURRENT

    def test_custom_lookahead(self):
        expiry = TODAY + timedelta(days=20)
        assert classify(expiry, TODAY, lookahead_days=30) == ExpiryStatus.EXPIRING_SOON
        assert classify(expiry, TODAY, lookahead_days=10) == ExpiryStatus.CURRENT

    def test_zero_lookahead(self):
        assert classify(TODAY, TODAY, lookahead_days=0) == ExpiryStatus.EXPIRING_SOON
        assert classify(TODAY + timedelta(days=1), TODAY, lookahead_days=0) == ExpiryStatus.CURRENT


class TestDeriveExpiry:

    def test_adds_validity_days(self):
        assert derive_expiry(date(2025, 1, 1), 365) == date(2026, 1, 1)

    def test_never_expires(self):
        assert derive_expiry(date(2025, 1, 1), None) is None

    def test_zero_days_expires_same_day(self):
        assert derive_expiry(date(2025, 1, 1), 0) == date(2025, 1, 1)

    def test_leap_year(self):
        assert derive_expiry(date(2024, 2, 28), 1) == date(2024, 2, 29)


class TestReportTypes:

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_means_all(self, raw):
        assert parse_report_type(raw) == ReportType.ALL

    def test_case_insensitive(self):
        assert parse_report_type("Expiring") == ReportType.EXPIRING

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Invalid report type"):
            parse_report_type("soon")

    def test_valid_includes_expiring_and_never(self):
        assert matches_report_type(ReportType.VALID, None, TODAY)
        assert matches_report_type(ReportType.VALID, TODAY, TODAY)
        assert matches_report_type(ReportType.VALID, TODAY + timedelta(days=400), TODAY)
        assert not matches_report_type(ReportType.VALID, TODAY - timedelta(days=1), TODAY)

    def test_expiring_uses_same_boundaries(self):
        assert matches_report_type(ReportType.EXPIRING, TODAY + timedelta(days=90), TODAY)
        assert not matches_report_type(ReportType.EXPIRING, TODAY + timedelta(days=91), TODAY)
        assert not matches_report_type(ReportType.EXPIRING, None, TODAY)

    def test_expired(self):
        assert matches_report_type(ReportType.EXPIRED, TODAY - timedelta(days=1), TODAY)
        assert not matches_report_type(ReportType.EXPIRED, TODAY, TODAY)

    def test_all(self):
        assert matches_report_type(ReportType.ALL, TODAY - timedelta(days=500), TODAY)
