"""
Reference geography for Côte d'Ivoire and Greater Abidjan.

District names arrive from forms, geocoders and seed files with or
without accents and in any case ("port bouet", "Port-Bouët", "ADJAME"),
so every lookup goes through :func:`normalize_district`.
"""

from __future__ import annotations

import math
import unicodedata
from typing import Optional

# Bounding box of Côte d'Ivoire
CI_BOUNDS = {
    "north": 10.74,
    "south": 4.34,
    "east": -2.49,
    "west": -8.60,
}

ABIDJAN = "Abidjan"

# Canonical commune name -> approximate centroid (lat, lng)
ABIDJAN_COMMUNES: dict[str, tuple[float, float]] = {
    "Abobo": (5.4167, -4.0167),
    "Adjamé": (5.3667, -4.0167),
    "Anyama": (5.4950, -4.0517),
    "Attécoubé": (5.3333, -4.0333),
    "Bingerville": (5.3550, -3.8950),
    "Cocody": (5.3600, -3.9600),
    "Koumassi": (5.2950, -3.9500),
    "Marcory": (5.2833, -3.9833),
    "Plateau": (5.3236, -4.0197),
    "Port-Bouët": (5.2550, -3.9260),
    "Songon": (5.3167, -4.2500),
    "Treichville": (5.2920, -4.0050),
    "Yopougon": (5.3458, -4.0732),
}


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.lower().replace("-", " ").split())


_FOLDED_COMMUNES = {_fold(name): name for name in ABIDJAN_COMMUNES}


def normalize_district(district: Optional[str]) -> Optional[str]:
    """Return the canonical commune name for *district*, or None if unknown."""
    if not district:
        return None
    return _FOLDED_COMMUNES.get(_fold(district))


def is_abidjan(city: Optional[str]) -> bool:
    return bool(city) and _fold(city) == _fold(ABIDJAN)


def find_commune_in_text(text: str) -> Optional[str]:
    """First known commune mentioned in free text, in order of appearance."""
    folded = f" {_fold(text.replace(',', ' '))} "
    best: tuple[int, str] | None = None
    for key, name in _FOLDED_COMMUNES.items():
        pos = folded.find(f" {key} ")
        if pos >= 0 and (best is None or pos < best[0]):
            best = (pos, name)
    return best[1] if best else None


def within_ci_bounds(lat: float, lng: float) -> bool:
    return (
        CI_BOUNDS["south"] <= lat <= CI_BOUNDS["north"]
        and CI_BOUNDS["west"] <= lng <= CI_BOUNDS["east"]
    )


EARTH_RADIUS_KM = 6_371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km.

    Prices and ETAs use the straight line, not the road, so a quote never
    depends on a routing provider.  The lagoon makes some road trips longer;
    the per-km rate absorbs that.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lng2 - lng1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))
