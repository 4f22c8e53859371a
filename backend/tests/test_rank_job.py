import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from auditoryx.services.marketplace_store import MarketplaceStore
from auditoryx.services.rank_job import recompute_user, run_rank_recompute
from auditoryx.services.rank_scorer import RankOutcome


def _set_stats(store, user_id, **values):
    assignments = ", ".join(f"{column} = ?" for column in values)
    conn = store._connect()
    try:
        conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", (*values.values(), user_id))
        conn.commit()
    finally:
        conn.close()


def _store(tmp_path):
    return MarketplaceStore(db_path=str(tmp_path / "rank.sqlite3"))


def test_rank_job_pages_through_creators_in_batches(tmp_path, caplog):
    store = _store(tmp_path)
    for idx in range(7):
        store.upsert_user(user_id=f"creator_{idx:02d}", display_name=f"Creator {idx}", roles=["producer"])
    store.upsert_user(user_id="listener", display_name="Just a client", roles=["client"])
    _set_stats(store, "creator_03", xp=600)
    _set_stats(store, "creator_05", xp=3000, open_disputes=1, tier_frozen=1)

    with caplog.at_level(logging.INFO):
        result = run_rank_recompute(store, batch_size=3)

    assert result.processed == 7
    assert result.batches == 3
    assert result.tier_changes == 1
    assert result.errors == 0
    assert any("rank_job=" in record.getMessage() for record in caplog.records)

    promoted = store.get_user("creator_03")
    assert promoted.tier == "verified"
    assert promoted.rank_score == 500 + 60

    frozen = store.get_user("creator_05")
    assert frozen.tier == "standard"
    assert frozen.tier_frozen is True
    assert frozen.rank_score == 100 + 200

    untouched = store.get_user("listener")
    assert untouched.rank_score == 0.0


def test_rank_job_exact_page_multiple_stops_cleanly(tmp_path):
    store = _store(tmp_path)
    for idx in range(4):
        store.upsert_user(user_id=f"eng_{idx}", display_name=f"Engineer {idx}", roles=["engineer"])

    result = run_rank_recompute(store, batch_size=2)
    assert result.processed == 4
    assert result.batches == 2


def test_rank_job_on_empty_store(tmp_path):
    result = run_rank_recompute(_store(tmp_path), batch_size=10)
    assert result.processed == 0
    assert result.batches == 0


def test_single_user_recompute(tmp_path):
    store = _store(tmp_path)
    store.upsert_user(user_id="artist_1", display_name="Artist", roles=["artist"])
    _set_stats(store, "artist_1", xp=2600, average_rating=4.0, review_count=10, response_hrs=1.0)

    profile, outcome = recompute_user(store, "artist_1")
    assert outcome.tier_changed is True
    assert profile.tier == "signature"
    assert profile.rank_score == 1000 + 80 + 20 + 200 + 50
    assert store.leaderboard(limit=5)[0].id == "artist_1"


def test_dispute_opened_after_page_read_keeps_tier(tmp_path):
    store = _store(tmp_path)
    store.upsert_user(user_id="producer_1", display_name="Producer", roles=["producer"])
    _set_stats(store, "producer_1", xp=600)
    page = store.list_creator_page(after_user_id=None, limit=10)
    assert page[0].tier_frozen is False

    _set_stats(store, "producer_1", open_disputes=1)
    store.apply_rank_updates(
        [("producer_1", RankOutcome(tier="verified", rank_score=560.0, tier_frozen=False, tier_changed=True))]
    )

    held = store.get_user("producer_1")
    assert held.tier == "standard"
    assert held.tier_frozen is True
    assert held.rank_score == 560.0

    _set_stats(store, "producer_1", open_disputes=0)
    store.apply_rank_updates(
        [("producer_1", RankOutcome(tier="verified", rank_score=560.0, tier_frozen=False, tier_changed=True))]
    )
    released = store.get_user("producer_1")
    assert released.tier == "verified"
    assert released.tier_frozen is False
