"""
Unit Tests for Region Resolution and Month Periods
==================================================

Test Coverage
-------------
- Country code -> region mapping (case, whitespace, unknown, missing)
- Regional-indicator flags
- Month identifiers in the leaderboard timezone
- Previous-month computation used by the scheduled rollover
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from mathboard.modules.leaderboard.constants import FALLBACK_REGION
from mathboard.modules.leaderboard.periods import (
    current_month_identifier,
    previous_month_identifier,
    resolve_timezone,
    validate_month_identifier,
)
from mathboard.modules.leaderboard.regions import RegionResolver, country_flag
from mathboard.modules.shared.exceptions import ValidationError


# ============================================================================
# REGION RESOLVER
# ============================================================================


@pytest.mark.unit
class TestRegionResolver:
    def test_known_codes_resolve_to_their_region(self):
        resolver = RegionResolver()

        assert resolver.resolve("VN") == "asia"
        assert resolver.resolve("US") == "america"
        assert resolver.resolve("DE") == "europe"

    def test_unknown_code_falls_back_to_others(self):
        assert RegionResolver().resolve("ZZ") == FALLBACK_REGION

    @pytest.mark.parametrize("code", [None, "", "   "])
    def test_missing_code_falls_back_to_others(self, code):
        assert RegionResolver().resolve(code) == FALLBACK_REGION

    def test_lookup_ignores_case_and_whitespace(self):
        assert RegionResolver().resolve(" vn ") == "asia"

    def test_custom_mapping_replaces_defaults(self):
        resolver = RegionResolver({"nordics": ["SE", "NO"]})

        assert resolver.resolve("SE") == "nordics"
        assert resolver.resolve("VN") == FALLBACK_REGION

    def test_duplicate_code_keeps_first_region(self):
        resolver = RegionResolver({"a": ["XX"], "b": ["XX"]})

        assert resolver.resolve("XX") == "a"

    def test_mapping_from_config_override(self):
        from mathboard.core.config.manager import ConfigManager

        ConfigManager.set_override("leaderboard.region_mapping", {"antarctica": ["AQ"]})

        assert RegionResolver().resolve("AQ") == "antarctica"


@pytest.mark.unit
class TestCountryFlag:
    def test_two_letter_code_becomes_flag(self):
        assert country_flag("vn") == "\U0001F1FB\U0001F1F3"

    @pytest.mark.parametrize("code", [None, "", "USA", "1A"])
    def test_invalid_codes_have_no_flag(self, code):
        assert country_flag(code) is None


# ============================================================================
# PERIODS
# ============================================================================


@pytest.mark.unit
class TestMonthIdentifiers:
    def test_current_month_uses_leaderboard_timezone(self):
        # 23:30 UTC on Jan 31 is already February in Ho Chi Minh City
        now = datetime(2024, 1, 31, 23, 30, tzinfo=timezone.utc)

        assert current_month_identifier(timezone.utc, now) == "2024-01"
        assert current_month_identifier(ZoneInfo("Asia/Ho_Chi_Minh"), now) == "2024-02"

    def test_previous_month_wraps_year(self):
        assert previous_month_identifier(datetime(2024, 1, 1, 2, 0, tzinfo=timezone.utc)) == "2023-12"

    def test_previous_month_of_scheduled_instant(self):
        assert previous_month_identifier(datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)) == "2024-02"

    @pytest.mark.parametrize("value", ["2024-1", "2024-13", "24-01", "2024/01", ""])
    def test_invalid_month_identifier_rejected(self, value):
        with pytest.raises(ValidationError):
            validate_month_identifier(value)

    def test_resolve_timezone(self):
        assert resolve_timezone("UTC") is timezone.utc
        assert resolve_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")
        with pytest.raises(ValidationError):
            resolve_timezone("Mars/Olympus_Mons")
