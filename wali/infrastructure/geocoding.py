"""
Geocoding adapter over the Google Geocoding API.

Requests are biased to Côte d'Ivoire (``region=ci``, ``language=fr``,
``components=country:CI``) and any result outside the country bounds is
rejected.  When the provider cannot help, :meth:`Geocoder.geocode_with_fallback`
falls back to the centroid of the Abidjan commune named in the text.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from wali.config import settings
from wali.domain.entities import GeocodeResult
from wali.domain.errors import ProviderError, ValidationError
from wali.domain.geography import (
    ABIDJAN,
    ABIDJAN_COMMUNES,
    find_commune_in_text,
    normalize_district,
    within_ci_bounds,
)
from wali.domain.validation import validate_coordinates

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

LOCATION_CONFIDENCE = {
    "ROOFTOP": 1.0,
    "RANGE_INTERPOLATED": 0.8,
    "GEOMETRIC_CENTER": 0.6,
    "APPROXIMATE": 0.4,
}
FALLBACK_CONFIDENCE = 0.3


class Geocoder(ABC):
    @abstractmethod
    async def geocode(self, address_text: str, country_bias: str = "ci") -> GeocodeResult: ...

    @abstractmethod
    async def reverse_geocode(self, latitude: float, longitude: float) -> GeocodeResult: ...

    async def geocode_with_fallback(self, address_text: str) -> GeocodeResult:
        try:
            return await self.geocode(address_text)
        except ProviderError:
            commune = find_commune_in_text(address_text)
            if commune is None:
                raise
            lat, lng = ABIDJAN_COMMUNES[commune]
            logger.warning(
                "Geocoding unavailable, using %s centroid for %r", commune, address_text
            )
            return GeocodeResult(
                latitude=lat,
                longitude=lng,
                formatted_address=f"{commune}, {ABIDJAN}",
                city=ABIDJAN,
                district=commune,
                confidence=FALLBACK_CONFIDENCE,
            )


class GoogleGeocoder(Geocoder):
    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self._client = client
        self.timeout = timeout or settings.geocoding_timeout_seconds

    async def geocode(self, address_text: str, country_bias: str = "ci") -> GeocodeResult:
        if not address_text or not address_text.strip():
            raise ValidationError("Adresse à géocoder vide")
        return await self._query(
            {
                "address": address_text,
                "region": country_bias,
                "components": f"country:{country_bias.upper()}",
            }
        )

    async def reverse_geocode(self, latitude: float, longitude: float) -> GeocodeResult:
        validate_coordinates(latitude, longitude)
        return await self._query({"latlng": f"{latitude},{longitude}"})

    async def _query(self, params: dict[str, str]) -> GeocodeResult:
        if not self.api_key:
            raise ProviderError("Service de géocodage non configuré")
        params = {**params, "language": "fr", "key": self.api_key}
        try:
            if self._client is not None:
                response = await self._client.get(GOOGLE_GEOCODE_URL, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(GOOGLE_GEOCODE_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Google Geocoding call failed: %s", exc)
            raise ProviderError("Service de géocodage indisponible") from exc

        status = data.get("status")
        if status == "ZERO_RESULTS":
            raise ProviderError("Adresse introuvable", code="GEOCODE_NO_RESULT")
        if status != "OK" or not data.get("results"):
            logger.error(
                "Google Geocoding error: %s - %s", status, data.get("error_message")
            )
            raise ProviderError("Service de géocodage indisponible")
        return self._parse(data["results"][0])

    @staticmethod
    def _parse(result: dict[str, Any]) -> GeocodeResult:
        geometry = result.get("geometry", {})
        location = geometry.get("location", {})
        lat, lng = location.get("lat"), location.get("lng")
        if lat is None or lng is None:
            raise ProviderError("Réponse de géocodage incomplète")
        if not within_ci_bounds(lat, lng):
            raise ValidationError("Adresse hors de Côte d'Ivoire")

        city, district = None, None
        for component in result.get("address_components", []):
            types = component.get("types", [])
            name = component.get("long_name")
            if "locality" in types:
                city = name
            elif district is None and (
                "sublocality" in types
                or "sublocality_level_1" in types
                or "administrative_area_level_3" in types
            ):
                district = name

        return GeocodeResult(
            latitude=lat,
            longitude=lng,
            formatted_address=result.get("formatted_address", ""),
            city=city or ABIDJAN,
            district=normalize_district(district) or district,
            confidence=LOCATION_CONFIDENCE.get(geometry.get("location_type"), 0.5),
        )
