from typing import Optional

from fastapi import APIRouter, Header, Query

from auditoryx.auth import assert_actor_authorized
from auditoryx.models import Offer, OfferCreateRequest, OfferUpdateRequest
from auditoryx.routers.http_errors import raise_http_error
from auditoryx.services.errors import MarketplaceError
from auditoryx.services.marketplace_store import marketplace_store

router = APIRouter(prefix="/offers", tags=["offers"])


@router.get("", response_model=dict)
def list_offers(
    user_id: Optional[str] = Query(default=None),
    role: Optional[str] = Query(default=None),
    active: Optional[bool] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=50),
    after: Optional[str] = Query(default=None),
):
    offers = marketplace_store.list_offers(user_id=user_id, role=role, active=active, limit=limit, after=after)
    return {
        "offers": [offer.model_dump() for offer in offers],
        "has_more": len(offers) == limit,
        "last_id": offers[-1].id if offers else None,
    }


@router.post("", response_model=Offer)
def create_offer(
    request: OfferCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.user_id, authorization=authorization)
    try:
        return marketplace_store.create_offer(request)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{offer_id}", response_model=Offer)
def get_offer(offer_id: str):
    try:
        return marketplace_store.get_offer(offer_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.patch("/{offer_id}", response_model=Offer)
def update_offer(
    offer_id: str,
    request: OfferUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.user_id, authorization=authorization)
    try:
        return marketplace_store.update_offer(offer_id, request)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.delete("/{offer_id}", response_model=dict)
def delete_offer(
    offer_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        outcome = marketplace_store.delete_offer(offer_id=offer_id, actor_user_id=user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
    return {"offer_id": offer_id, "status": outcome}
