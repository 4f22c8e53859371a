from dataclasses import dataclass
from typing import Iterable, List, Optional

TIER_STANDARD = "standard"
TIER_VERIFIED = "verified"
TIER_SIGNATURE = "signature"

TIER_WEIGHTS = {
    TIER_SIGNATURE: 1000,
    TIER_VERIFIED: 500,
    TIER_STANDARD: 100,
}

SIGNATURE_XP_THRESHOLD = 2500
VERIFIED_XP_THRESHOLD = 500

FAST_RESPONSE_HOURS = 2.0
FAST_RESPONSE_BONUS = 50

XP_PER_COMPLETED_BOOKING = 100

BOOKING_MILESTONE_BADGES = (
    (1, "first-booking"),
    (10, "milestone-10-bookings"),
    (50, "milestone-50-bookings"),
    (100, "milestone-100-bookings"),
)


@dataclass(frozen=True)
class RankInputs:
    tier: str
    xp: int
    average_rating: float
    review_count: int
    response_hrs: Optional[float]
    open_disputes: int


@dataclass(frozen=True)
class RankOutcome:
    tier: str
    rank_score: float
    tier_frozen: bool
    tier_changed: bool


def tier_for_xp(xp: int) -> str:
    if xp >= SIGNATURE_XP_THRESHOLD:
        return TIER_SIGNATURE
    if xp >= VERIFIED_XP_THRESHOLD:
        return TIER_VERIFIED
    return TIER_STANDARD


def tier_weight(tier: str) -> int:
    return TIER_WEIGHTS.get(tier, TIER_WEIGHTS[TIER_STANDARD])


def rank_score(
    tier: str,
    average_rating: float,
    review_count: int,
    xp: int,
    response_hrs: Optional[float],
) -> float:
    score = float(tier_weight(tier))
    score += max(average_rating, 0.0) * 20
    score += min(max(review_count, 0) * 2, 100)
    score += min(max(xp, 0) / 10, 200)
    if response_hrs is not None and response_hrs <= FAST_RESPONSE_HOURS:
        score += FAST_RESPONSE_BONUS
    return round(score, 2)


def evaluate(inputs: RankInputs) -> RankOutcome:
    """Recompute tier and rank score for one creator.

    Any open dispute freezes the tier where it is; the score is still
    recomputed, using whichever tier the creator ends up with.
    """
    frozen = inputs.open_disputes > 0
    tier = inputs.tier if frozen else tier_for_xp(inputs.xp)
    score = rank_score(
        tier=tier,
        average_rating=inputs.average_rating,
        review_count=inputs.review_count,
        xp=inputs.xp,
        response_hrs=inputs.response_hrs,
    )
    return RankOutcome(tier=tier, rank_score=score, tier_frozen=frozen, tier_changed=tier != inputs.tier)


def running_average(current: Optional[float], count: int, sample: float) -> float:
    if current is None or count <= 0:
        return round(sample, 2)
    return round((current * count + sample) / (count + 1), 2)


def new_milestone_badges(completed_bookings: int, existing: Iterable[str]) -> List[str]:
    owned = set(existing)
    return [
        badge
        for threshold, badge in BOOKING_MILESTONE_BADGES
        if completed_bookings >= threshold and badge not in owned
    ]
