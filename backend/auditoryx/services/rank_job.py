import json
import logging
from typing import List, Tuple

from auditoryx.models import RankJobResult, UserProfile
from auditoryx.services.marketplace_store import MarketplaceStore, env_int
from auditoryx.services.rank_scorer import RankInputs, RankOutcome, evaluate

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


def configured_batch_size() -> int:
    return env_int("RANK_BATCH_SIZE", DEFAULT_BATCH_SIZE)


def _inputs_for(user: UserProfile) -> RankInputs:
    return RankInputs(
        tier=user.tier,
        xp=user.xp,
        average_rating=user.average_rating,
        review_count=user.review_count,
        response_hrs=user.response_hrs,
        open_disputes=user.open_disputes,
    )


def recompute_user(store: MarketplaceStore, user_id: str) -> Tuple[UserProfile, RankOutcome]:
    """Recompute a single creator outside the nightly sweep."""
    user = store.get_user(user_id)
    outcome = evaluate(_inputs_for(user))
    store.apply_rank_updates([(user.id, outcome)])
    if outcome.tier_changed:
        logger.info("Tier change for %s: %s -> %s", user.id, user.tier, outcome.tier)
    return store.get_user(user_id), outcome


def run_rank_recompute(store: MarketplaceStore, batch_size: int = 0) -> RankJobResult:
    """Sweep every creator in id order, one transaction per page.

    A creator whose inputs cannot be evaluated is counted as an error and
    skipped; the rest of the page is still written.
    """
    size = batch_size if batch_size > 0 else configured_batch_size()
    processed = 0
    tier_changes = 0
    batches = 0
    errors = 0
    cursor = None

    while True:
        page = store.list_creator_page(after_user_id=cursor, limit=size)
        if not page:
            break
        updates: List[Tuple[str, RankOutcome]] = []
        for user in page:
            try:
                outcome = evaluate(_inputs_for(user))
            except (TypeError, ValueError):
                errors += 1
                logger.exception("Rank evaluation failed for %s", user.id)
                continue
            if outcome.tier_changed:
                tier_changes += 1
                logger.info("Tier change for %s: %s -> %s", user.id, user.tier, outcome.tier)
            updates.append((user.id, outcome))
        store.apply_rank_updates(updates)
        processed += len(updates)
        batches += 1
        cursor = page[-1].id
        if len(page) < size:
            break

    result = RankJobResult(processed=processed, tier_changes=tier_changes, batches=batches, errors=errors)
    logger.info("rank_job=%s", json.dumps(result.model_dump(), sort_keys=True))
    return result
