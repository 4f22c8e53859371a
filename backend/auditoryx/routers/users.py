from typing import Optional

from fastapi import APIRouter, Header

from auditoryx.auth import assert_actor_authorized
from auditoryx.models import UserProfile, UserProfileUpsertRequest
from auditoryx.routers.http_errors import raise_http_error
from auditoryx.services.errors import MarketplaceError
from auditoryx.services.marketplace_store import marketplace_store

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserProfile)
def upsert_user(
    request: UserProfileUpsertRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.user_id, authorization=authorization)
    try:
        return marketplace_store.upsert_user(
            user_id=request.user_id,
            display_name=request.display_name,
            roles=request.roles,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{user_id}", response_model=UserProfile)
def get_user(user_id: str):
    try:
        return marketplace_store.get_user(user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
