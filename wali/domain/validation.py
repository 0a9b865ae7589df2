"""Input validation rules shared by the services and the pricing engine."""

from __future__ import annotations

import math
import re
from dataclasses import replace
from typing import Any, Iterable, Optional, Type, TypeVar

from .entities import Address, OrderItem
from .errors import ValidationError
from .geography import is_abidjan, normalize_district, within_ci_bounds

PHONE_PATTERN = re.compile(r"^\+225[0-9]{8,10}$")

E = TypeVar("E")


def format_phone(phone: str) -> str:
    """Normalise an Ivorian number to ``+225XXXXXXXXXX`` when possible."""
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("225"):
        return f"+{digits}"
    if len(digits) in (8, 10):
        return f"+225{digits}"
    return phone


def validate_phone(phone: str) -> str:
    formatted = format_phone(phone)
    if not PHONE_PATTERN.match(formatted):
        raise ValidationError("Numéro de téléphone ivoirien invalide")
    return formatted


def coerce_enum(enum_cls: Type[E], value: Any, label: str) -> E:
    """Return ``enum_cls(value)`` or raise a ValidationError naming *label*."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)  # type: ignore[call-arg]
    except ValueError:
        raise ValidationError(f"{label} inconnu : {value!r}") from None


def validate_coordinates(
    latitude: Optional[float], longitude: Optional[float], *, in_country: bool = True
) -> None:
    if latitude is None or longitude is None:
        raise ValidationError("Coordonnées GPS manquantes")
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in (latitude, longitude)):
        raise ValidationError("Coordonnées GPS invalides")
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValidationError("Coordonnées GPS hors limites")
    if in_country and not within_ci_bounds(latitude, longitude):
        raise ValidationError("Adresse hors de Côte d'Ivoire")


def validate_address(address: Optional[Address], *, in_country: bool = True) -> Address:
    """Check an address and return it with its district in canonical form."""
    if address is None:
        raise ValidationError("Adresse manquante")
    if not address.street or len(address.street.strip()) < 3:
        raise ValidationError("L'adresse doit contenir une rue ou un repère")
    if not address.city or len(address.city.strip()) < 2:
        raise ValidationError("La ville doit contenir au moins 2 caractères")
    validate_coordinates(address.latitude, address.longitude, in_country=in_country)

    district = address.district
    if is_abidjan(address.city):
        canonical = normalize_district(district)
        if not district:
            raise ValidationError("La commune est obligatoire pour une adresse à Abidjan")
        if canonical is None:
            raise ValidationError(f"Commune d'Abidjan inconnue : {district}")
        district = canonical
    return replace(address, district=district)


def validate_items(items: Iterable[OrderItem]) -> list[OrderItem]:
    items = list(items)
    if not items:
        raise ValidationError("La commande doit contenir au moins un article")
    for item in items:
        if not item.name or not item.name.strip():
            raise ValidationError("Chaque article doit avoir un nom")
        if item.quantity < 1:
            raise ValidationError(f"Quantité invalide pour « {item.name} »")
        if item.weight_kg < 0 or item.value < 0:
            raise ValidationError(f"Poids ou valeur négatifs pour « {item.name} »")
    if sum(i.total_value for i in items) <= 0:
        raise ValidationError("La valeur déclarée de la commande doit être positive")
    return items
