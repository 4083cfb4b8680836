"""Static TDSP territory tables for the Texas deregulated market.

Loads four JSON tables from data/:
  tdsp_cities.json          city slug -> {duns, name, zone, tier, priority}
  zip_to_city.json          ZIP -> city slug
  multi_tdsp_zips.json      ZIPs split between two or more TDSPs
  non_deregulated_areas.json  co-op ZIPs and municipal-utility cities
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from .models import City, TDSPInfo

logger = logging.getLogger(__name__)


TDSP_INFO: Dict[str, TDSPInfo] = {
    "ONCOR": TDSPInfo("1039940674000", "Oncor Electric Delivery", "North", 1, 1.0, "primary"),
    "CENTERPOINT": TDSPInfo("957877905", "CenterPoint Energy Houston Electric", "Coast", 1, 1.0, "primary"),
    "AEP_NORTH": TDSPInfo("007923311", "AEP Texas North Company", "North", 2, 0.8, "primary"),
    "AEP_CENTRAL": TDSPInfo("007924772", "AEP Texas Central Company", "Central", 2, 0.8, "primary"),
    "TNMP": TDSPInfo("007929441", "Texas-New Mexico Power Company", "South", 2, 0.7, "boundary"),
    "LUBBOCK": TDSPInfo("0582138934100", "Lubbock Power and Light", "North", 3, 0.6, "primary"),
}

_DUNS_TO_CODE = {info.duns: code for code, info in TDSP_INFO.items()}

# Slug suffix, e.g. "dallas-tx"
_STATE_SUFFIX = re.compile(r"-tx$")


def city_display_name(slug: str) -> str:
    """'fort-worth-tx' -> 'Fort Worth'."""
    base = _STATE_SUFFIX.sub("", slug or "")
    return " ".join(w.capitalize() for w in base.split("-") if w)


def format_city_name(slug: str) -> str:
    """'dallas-tx' -> 'Dallas, TX'."""
    name = city_display_name(slug)
    if _STATE_SUFFIX.search(slug or ""):
        return f"{name}, TX"
    return name


def format_filter_name(segment: str) -> str:
    """'free-weekends' -> 'Free Weekends'."""
    return " ".join(w.capitalize() for w in (segment or "").split("-") if w)


def _load_json(path: Path, label: str) -> dict:
    if not path.exists():
        logger.warning(f"{label} file not found: {path}")
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
        return data
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Failed to load {label}: {e}")
        return {}


class TDSPMapping:
    """City, ZIP and boundary lookups over the static territory tables."""

    def __init__(self, cities_file: Path, zip_to_city_file: Path,
                 multi_tdsp_file: Path, non_deregulated_file: Path):
        self._cities: Dict[str, dict] = _load_json(Path(cities_file), "TDSP city table")
        self._zip_to_city: Dict[str, str] = _load_json(Path(zip_to_city_file), "ZIP-to-city table")
        self._multi: Dict[str, dict] = _load_json(Path(multi_tdsp_file), "multi-TDSP table")
        non_dereg = _load_json(Path(non_deregulated_file), "non-deregulated table")
        self._cooperative_zips: Dict[str, dict] = non_dereg.get("cooperative_zips", {})
        self._municipal_cities: Dict[str, dict] = non_dereg.get("municipal_cities", {})

        logger.info(
            f"TDSP mapping: {len(self._cities)} cities, {len(self._zip_to_city)} ZIPs, "
            f"{len(self._multi)} multi-TDSP ZIPs"
        )

    @classmethod
    def from_config(cls, config) -> "TDSPMapping":
        return cls(
            config.cities_file,
            config.zip_to_city_file,
            config.multi_tdsp_file,
            config.non_deregulated_file,
        )

    # -- cities --------------------------------------------------------

    def get_city_from_zip(self, zip_code: str) -> Optional[str]:
        return self._zip_to_city.get((zip_code or "").strip())

    def get_tdsp_from_city(self, slug: str) -> Optional[str]:
        entry = self._cities.get(slug)
        return entry["duns"] if entry else None

    def validate_city_slug(self, slug: str) -> bool:
        return slug in self._cities

    def get_city(self, slug: str) -> Optional[City]:
        entry = self._cities.get(slug)
        if not entry:
            return None
        tdsp = TDSPInfo(
            duns=entry["duns"],
            name=entry["name"],
            zone=entry["zone"],
            tier=entry.get("tier", 3),
            priority=entry.get("priority", 0.5),
        )
        return City(
            slug=slug,
            name=city_display_name(slug),
            tdsp=tdsp,
            tier=entry.get("tier", 3),
            priority=entry.get("priority", 0.5),
        )

    def all_cities(self) -> List[City]:
        return [self.get_city(slug) for slug in self._cities]

    def city_slugs(self) -> List[str]:
        return list(self._cities)

    def zip_items(self):
        """(zip, slug) pairs from the static ZIP table."""
        return self._zip_to_city.items()

    # -- TDSPs ---------------------------------------------------------

    def get_tdsp_by_duns(self, duns: str) -> Optional[TDSPInfo]:
        code = _DUNS_TO_CODE.get(duns)
        return TDSP_INFO[code] if code else None

    def zone_for_duns(self, duns: str) -> str:
        info = self.get_tdsp_by_duns(duns)
        return info.zone if info else "North"

    # -- multi-TDSP ZIPs -----------------------------------------------

    def is_multi_tdsp_zip(self, zip_code: str) -> bool:
        return zip_code in self._multi

    def multi_tdsp_zip_codes(self) -> List[str]:
        return list(self._multi)

    def requires_address_validation(self, zip_code: str) -> bool:
        entry = self._multi.get(zip_code)
        return bool(entry and entry.get("requires_address_validation"))

    def get_primary_tdsp_for_zip(self, zip_code: str) -> Optional[TDSPInfo]:
        entry = self._multi.get(zip_code)
        if not entry:
            return None
        return TDSP_INFO.get(entry["primary"])

    def get_alternative_tdsps(self, zip_code: str) -> List[TDSPInfo]:
        entry = self._multi.get(zip_code)
        if not entry:
            return []
        return [TDSP_INFO[code] for code in entry.get("alternatives", []) if code in TDSP_INFO]

    def get_boundary_type(self, zip_code: str) -> Optional[str]:
        entry = self._multi.get(zip_code)
        return entry.get("boundary_type") if entry else None

    def get_boundary_notes(self, zip_code: str) -> str:
        entry = self._multi.get(zip_code)
        return entry.get("notes", "") if entry else ""

    # -- non-deregulated areas -----------------------------------------

    def get_cooperative(self, zip_code: str) -> Optional[dict]:
        return self._cooperative_zips.get(zip_code)

    def get_municipal_utility(self, slug: str) -> Optional[dict]:
        return self._municipal_cities.get(slug)
