"""ZIP -> TDSP inference with confidence scores.

Resolution order for a single ZIP:
1. Static table (zip_to_city + city table)      confidence 95
2. ZIP range rules                               confidence 75
3. Most common TDSP among static ZIPs within 50  confidence 60 + 5/match, max 90
4. County data (none shipped)
5. Oncor fallback                                confidence 30
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Tuple

from .models import TDSPInfo, ZIPCodeMapping
from .tdsp_mapping import TDSP_INFO, TDSPMapping

logger = logging.getLogger(__name__)

TEXAS_ZIP_MIN = 70000
TEXAS_ZIP_MAX = 79999
_TOTAL_TEXAS_ZIPS = TEXAS_ZIP_MAX - TEXAS_ZIP_MIN + 1

STATIC_CONFIDENCE = 95
RANGE_CONFIDENCE = 75
FALLBACK_CONFIDENCE = 30
NEARBY_WINDOW = 50

# (low, high, TDSP code), checked in order
_RANGE_RULES: List[Tuple[int, int, str]] = [
    (75000, 75999, "ONCOR"),
    (77000, 77999, "CENTERPOINT"),
    (78000, 78599, "AEP_CENTRAL"),
    (78600, 78999, "TNMP"),
    (79700, 79999, "AEP_NORTH"),
    (79000, 79699, "ONCOR"),
    (76000, 76999, "ONCOR"),
    (73000, 74999, "ONCOR"),
    (70000, 72999, "TNMP"),
]

_METRO_CITIES: List[Tuple[int, int, str, str]] = [
    (75000, 75399, "Dallas", "Dallas County"),
    (76000, 76199, "Fort Worth", "Tarrant County"),
    (77000, 77299, "Houston", "Harris County"),
    (78000, 78299, "Austin", "Travis County"),
    (78400, 78499, "Corpus Christi", "Nueces County"),
    (79000, 79199, "Lubbock", "Lubbock County"),
    (79900, 79999, "El Paso", "El Paso County"),
]

_REGIONS: List[Tuple[int, int, str]] = [
    (70000, 72999, "South Texas"),
    (73000, 74999, "East Texas"),
    (75000, 76999, "North Texas"),
    (77000, 77999, "Southeast Texas"),
    (78000, 78999, "Central Texas"),
    (79000, 79999, "West Texas"),
]


def _zip_int(zip_code: str) -> Optional[int]:
    if not zip_code or len(zip_code) != 5 or not zip_code.isdigit():
        return None
    return int(zip_code)


def is_texas_zip(zip_code: str) -> bool:
    z = _zip_int(zip_code)
    return z is not None and TEXAS_ZIP_MIN <= z <= TEXAS_ZIP_MAX


def infer_city(zip_code: str) -> str:
    z = _zip_int(zip_code)
    if z is None:
        return "Texas"
    for low, high, city, _ in _METRO_CITIES:
        if low <= z <= high:
            return city
    for low, high, region in _REGIONS:
        if low <= z <= high:
            return region
    return "Texas"


def infer_county(zip_code: str) -> str:
    z = _zip_int(zip_code)
    if z is None:
        return "Unknown County"
    for low, high, _, county in _METRO_CITIES:
        if low <= z <= high:
            return county
    return "Unknown County"


def infer_tdsp_by_range(zip_code: str) -> Optional[TDSPInfo]:
    z = _zip_int(zip_code)
    if z is None:
        return None
    for low, high, code in _RANGE_RULES:
        if low <= z <= high:
            return TDSP_INFO[code]
    return None


class ZIPMapper:
    """Resolves any Texas ZIP to a TDSP, preferring the static tables."""

    def __init__(self, mapping: TDSPMapping):
        self.mapping = mapping
        self._static: Optional[Dict[str, ZIPCodeMapping]] = None

    @property
    def static_mappings(self) -> Dict[str, ZIPCodeMapping]:
        if self._static is None:
            self._static = {}
            for zip_code, slug in self.mapping.zip_items():
                city = self.mapping.get_city(slug)
                if city is None:
                    continue
                self._static[zip_code] = ZIPCodeMapping(
                    zip_code=zip_code,
                    city=city.name,
                    county=infer_county(zip_code),
                    tdsp=city.tdsp.duns,
                    tdsp_name=city.tdsp.name,
                    confidence=STATIC_CONFIDENCE,
                    source="static",
                    zone=city.tdsp.zone,
                )
            logger.debug(f"Built {len(self._static)} static ZIP mappings")
        return self._static

    def lookup(self, zip_code: str) -> Optional[ZIPCodeMapping]:
        """
        Resolve a ZIP code to a TDSP mapping.

        Returns:
            ZIPCodeMapping, or None for malformed or non-Texas ZIPs
        """
        zip_code = (zip_code or "").strip()
        static = self.static_mappings.get(zip_code)
        if static:
            return static
        if not is_texas_zip(zip_code):
            return None

        tdsp = infer_tdsp_by_range(zip_code)
        if tdsp:
            return self._build(zip_code, tdsp, RANGE_CONFIDENCE, "inferred")

        nearby = self.infer_from_nearby(zip_code)
        if nearby:
            return nearby

        county = self.infer_from_county(zip_code)
        if county:
            return county

        return self._build(zip_code, TDSP_INFO["ONCOR"], FALLBACK_CONFIDENCE, "fallback")

    def infer_from_nearby(self, zip_code: str) -> Optional[ZIPCodeMapping]:
        z = _zip_int(zip_code)
        if z is None:
            return None
        nearby = [
            m for zc, m in self.static_mappings.items()
            if abs(int(zc) - z) <= NEARBY_WINDOW
        ]
        if not nearby:
            return None

        counts = Counter(m.tdsp for m in nearby)
        duns, count = counts.most_common(1)[0]
        sample = next(m for m in nearby if m.tdsp == duns)
        tdsp = TDSPInfo(duns=duns, name=sample.tdsp_name, zone=sample.zone)
        return self._build(zip_code, tdsp, min(90, 60 + count * 5), "nearby")

    def infer_from_county(self, zip_code: str) -> Optional[ZIPCodeMapping]:
        # No county-level territory data ships with the engine.
        return None

    def _build(self, zip_code: str, tdsp: TDSPInfo, confidence: int, source: str) -> ZIPCodeMapping:
        return ZIPCodeMapping(
            zip_code=zip_code,
            city=infer_city(zip_code),
            county=infer_county(zip_code),
            tdsp=tdsp.duns,
            tdsp_name=tdsp.name,
            confidence=confidence,
            source=source,
            zone=tdsp.zone,
        )

    def is_deregulated(self, zip_code: str) -> bool:
        m = self.lookup(zip_code)
        return m is not None and m.confidence > FALLBACK_CONFIDENCE

    def generate_comprehensive_mapping(self, start: int = TEXAS_ZIP_MIN,
                                       end: int = TEXAS_ZIP_MAX) -> List[ZIPCodeMapping]:
        """Static mappings in range plus inferred ones for every gap."""
        start = max(start, TEXAS_ZIP_MIN)
        end = min(end, TEXAS_ZIP_MAX)
        results = []
        for z in range(start, end + 1):
            m = self.lookup(f"{z:05d}")
            if m:
                results.append(m)
        logger.info(f"Generated {len(results)} ZIP mappings for {start}-{end}")
        return results

    def city_slug_for(self, mapping: ZIPCodeMapping) -> str:
        """
        City page slug for a mapping.

        Static table first, then the inferred city name, then the
        highest-priority city in the same TDSP territory.
        """
        slug = self.mapping.get_city_from_zip(mapping.zip_code)
        if slug and self.mapping.validate_city_slug(slug):
            return slug
        slug = mapping.city.lower().replace(" ", "-") + "-tx"
        if self.mapping.validate_city_slug(slug):
            return slug
        same_tdsp = [c for c in self.mapping.all_cities() if c.duns == mapping.tdsp]
        if same_tdsp:
            return max(same_tdsp, key=lambda c: c.priority).slug
        return slug


def coverage_stats(mappings: List[ZIPCodeMapping]) -> dict:
    by_tdsp: Dict[str, int] = {}
    by_source: Dict[str, int] = {}
    for m in mappings:
        by_tdsp[m.tdsp_name] = by_tdsp.get(m.tdsp_name, 0) + 1
        by_source[m.source] = by_source.get(m.source, 0) + 1
    return {
        "total_mapped": len(mappings),
        "coverage_percentage": round(len(mappings) / _TOTAL_TEXAS_ZIPS * 100, 2),
        "by_tdsp": by_tdsp,
        "by_source": by_source,
    }
