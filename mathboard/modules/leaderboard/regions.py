"""
Region resolution for regional leaderboards.

`RegionResolver.resolve` is total: every input, including None, blank and
unknown codes, maps to a region; anything unmapped lands in "others".
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

from mathboard.core.config.manager import ConfigManager
from mathboard.core.logging.logger import get_logger
from mathboard.modules.leaderboard.constants import DEFAULT_REGION_MAPPING, FALLBACK_REGION

logger = get_logger(__name__)

_REGIONAL_INDICATOR_A = 0x1F1E6


class RegionResolver:
    """
    Map ISO-3166 alpha-2 country codes onto coarse leaderboard regions.

    The lookup table defaults to `DEFAULT_REGION_MAPPING` and can be replaced
    with `leaderboard.region_mapping` (region -> list of country codes).
    """

    def __init__(self, mapping: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        if mapping is None:
            mapping = ConfigManager.get("leaderboard.region_mapping", None) or DEFAULT_REGION_MAPPING

        self._lookup: Dict[str, str] = {}
        for region, countries in mapping.items():
            for code in countries:
                normalized = str(code).strip().upper()
                previous = self._lookup.get(normalized)
                if previous is not None and previous != region:
                    logger.warning(
                        "Country code mapped to more than one region; keeping first",
                        extra={"country": normalized, "kept": previous, "ignored": region},
                    )
                    continue
                self._lookup[normalized] = str(region)

    def resolve(self, country_code: Optional[str]) -> str:
        if not country_code:
            return FALLBACK_REGION
        return self._lookup.get(str(country_code).strip().upper(), FALLBACK_REGION)


def country_flag(country_code: Optional[str]) -> Optional[str]:
    """
    Regional-indicator emoji for a two-letter country code.

    >>> country_flag("vn")
    '🇻🇳'
    """
    if not country_code:
        return None
    code = country_code.strip().upper()
    if len(code) != 2 or not code.isascii() or not code.isalpha():
        return None
    return "".join(chr(_REGIONAL_INDICATOR_A + ord(ch) - ord("A")) for ch in code)
