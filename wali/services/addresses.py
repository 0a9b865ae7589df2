"""Address book and geocoding use cases."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from wali.domain.entities import Address, GeocodeResult, User
from wali.domain.errors import NotFoundError
from wali.domain.repositories import IAddressRepository
from wali.domain.validation import validate_address
from wali.infrastructure.geocoding import Geocoder

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "label",
    "street",
    "city",
    "district",
    "landmark",
    "latitude",
    "longitude",
)


class AddressService:
    def __init__(self, address_repository: IAddressRepository, geocoder: Geocoder) -> None:
        self._addresses = address_repository
        self._geocoder = geocoder

    async def list_addresses(self, user: User) -> list[Address]:
        return await self._addresses.list_for_user(user.id)

    async def create_address(self, user: User, data: Address) -> Address:
        address = validate_address(data)
        existing = await self._addresses.list_for_user(user.id)
        make_default = data.is_default or not existing
        created = await self._addresses.add(
            replace(
                address,
                id=None,
                user_id=user.id,
                is_default=make_default,
                created_at=datetime.now(timezone.utc),
            )
        )
        if make_default:
            await self._addresses.set_default(user.id, created.id)
            created = replace(created, is_default=True)
        logger.info("Address %s created for user %s", created.id, user.id)
        return created

    async def update_address(
        self, user: User, address_id: int, changes: dict[str, Any]
    ) -> Address:
        current = await self._owned(user, address_id)
        updated = replace(
            current, **{k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        )
        updated = await self._addresses.update(validate_address(updated))
        if changes.get("is_default"):
            return await self.set_default_address(user, address_id)
        return updated

    async def delete_address(self, user: User, address_id: int) -> None:
        current = await self._owned(user, address_id)
        await self._addresses.delete(address_id)
        if current.is_default:
            remaining = await self._addresses.list_for_user(user.id)
            if remaining:
                newest = max(remaining, key=lambda a: (a.created_at, a.id))
                await self._addresses.set_default(user.id, newest.id)

    async def set_default_address(self, user: User, address_id: int) -> Address:
        await self._owned(user, address_id)
        await self._addresses.set_default(user.id, address_id)
        return await self._owned(user, address_id)

    async def geocode(self, text: str) -> GeocodeResult:
        return await self._geocoder.geocode_with_fallback(text)

    async def reverse_geocode(self, latitude: float, longitude: float) -> GeocodeResult:
        return await self._geocoder.reverse_geocode(latitude, longitude)

    async def resolve(
        self,
        *,
        street: Optional[str] = None,
        city: str = "Abidjan",
        district: Optional[str] = None,
        landmark: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        text: Optional[str] = None,
    ) -> Address:
        """Build an address from coordinates, geocoding the text if they are missing."""
        if latitude is not None and longitude is not None:
            return Address(
                street=street or text or (district or city),
                city=city,
                district=district,
                landmark=landmark,
                latitude=latitude,
                longitude=longitude,
            )
        query = text or ", ".join(p for p in (street, landmark, district, city) if p)
        result = await self._geocoder.geocode_with_fallback(query)
        return Address(
            street=street or result.formatted_address or query,
            city=result.city or city,
            district=district or result.district,
            landmark=landmark,
            latitude=result.latitude,
            longitude=result.longitude,
        )

    async def _owned(self, user: User, address_id: int) -> Address:
        address: Optional[Address] = await self._addresses.get(address_id)
        if address is None or address.user_id != user.id:
            raise NotFoundError("Adresse introuvable")
        return address
