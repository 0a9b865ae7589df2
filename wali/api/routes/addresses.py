"""
Address book and geocoding endpoints
====================================

GET    /api/v1/addresses                    -- my addresses, default first
POST   /api/v1/addresses                    -- add an address
PATCH  /api/v1/addresses/{id}               -- edit an address
DELETE /api/v1/addresses/{id}               -- remove an address
POST   /api/v1/addresses/{id}/default       -- make it the default
POST   /api/v1/addresses/geocode            -- text -> coordinates
POST   /api/v1/addresses/reverse-geocode    -- coordinates -> address
"""

from fastapi import APIRouter, Depends, Request, Response

from wali.api.dependencies import get_address_service, get_current_user
from wali.api.middleware import DEFAULT_LIMIT, limiter
from wali.api.schemas import (
    AddressCreateRequest,
    AddressResponse,
    AddressUpdateRequest,
    GeocodeRequest,
    GeocodeResponse,
    ReverseGeocodeRequest,
)
from wali.domain.entities import Address, User
from wali.services.addresses import AddressService

router = APIRouter(prefix="/addresses", tags=["addresses"])


@router.get("", response_model=list[AddressResponse], summary="List my addresses")
@limiter.limit(DEFAULT_LIMIT)
async def list_addresses(
    request: Request,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    return await service.list_addresses(user)


@router.post("", status_code=201, response_model=AddressResponse, summary="Add an address")
@limiter.limit(DEFAULT_LIMIT)
async def create_address(
    request: Request,
    body: AddressCreateRequest,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    return await service.create_address(user, Address(**body.model_dump()))


@router.post("/geocode", response_model=GeocodeResponse, summary="Geocode an address")
@limiter.limit(DEFAULT_LIMIT)
async def geocode(
    request: Request,
    body: GeocodeRequest,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    return await service.geocode(body.address)


@router.post(
    "/reverse-geocode", response_model=GeocodeResponse, summary="Reverse-geocode a point"
)
@limiter.limit(DEFAULT_LIMIT)
async def reverse_geocode(
    request: Request,
    body: ReverseGeocodeRequest,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    return await service.reverse_geocode(body.latitude, body.longitude)


@router.patch("/{address_id}", response_model=AddressResponse, summary="Edit an address")
@limiter.limit(DEFAULT_LIMIT)
async def update_address(
    request: Request,
    address_id: int,
    body: AddressUpdateRequest,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    return await service.update_address(user, address_id, body.model_dump(exclude_unset=True))


@router.delete("/{address_id}", status_code=204, summary="Delete an address")
@limiter.limit(DEFAULT_LIMIT)
async def delete_address(
    request: Request,
    address_id: int,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    await service.delete_address(user, address_id)
    return Response(status_code=204)


@router.post(
    "/{address_id}/default", response_model=AddressResponse, summary="Set default address"
)
@limiter.limit(DEFAULT_LIMIT)
async def set_default(
    request: Request,
    address_id: int,
    user: User = Depends(get_current_user),
    service: AddressService = Depends(get_address_service),
):
    return await service.set_default_address(user, address_id)
