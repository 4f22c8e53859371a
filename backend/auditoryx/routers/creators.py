from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from auditoryx.auth import assert_cron_or_admin, require_admin
from auditoryx.models import RankJobResult, Tier, UserProfile
from auditoryx.routers.http_errors import raise_http_error
from auditoryx.services.errors import MarketplaceError
from auditoryx.services.marketplace_store import marketplace_store
from auditoryx.services.rank_job import recompute_user, run_rank_recompute

router = APIRouter(tags=["creators"])


@router.get("/creators/leaderboard", response_model=list[UserProfile])
def leaderboard(
    tier: Optional[Tier] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
):
    return marketplace_store.leaderboard(tier=tier, limit=limit)


@router.post("/creators/{user_id}/rank/recompute", response_model=UserProfile)
def recompute_creator_rank(user_id: str, _admin: str = Depends(require_admin)):
    try:
        profile, _ = recompute_user(marketplace_store, user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
    return profile


@router.post("/cron/rank-recompute", response_model=RankJobResult)
def cron_rank_recompute(
    batch_size: int = Query(default=0, ge=0, le=5000),
    x_cron_secret: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
):
    assert_cron_or_admin(cron_secret=x_cron_secret, authorization=authorization)
    return run_rank_recompute(marketplace_store, batch_size=batch_size)
