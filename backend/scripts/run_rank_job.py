#!/usr/bin/env python3
import argparse
import json
import logging
import os
import sys
from pathlib import Path

REPO_BACKEND = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_BACKEND))

from auditoryx.services.marketplace_store import MarketplaceStore, default_db  # noqa: E402
from auditoryx.services.rank_job import configured_batch_size, run_rank_recompute  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Recompute creator tiers and rank scores.")
    parser.add_argument("--db", default=os.getenv("MARKETPLACE_DB_PATH", default_db), help="SQLite database path.")
    parser.add_argument("--batch-size", type=int, default=configured_batch_size(), help="Creators per transaction.")
    parser.add_argument("--json-out", default="", help="Optional path to write the job summary.")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    store = MarketplaceStore(db_path=args.db)
    result = run_rank_recompute(store, batch_size=args.batch_size)
    print(
        f"Processed {result.processed} creator(s) in {result.batches} batch(es): "
        f"{result.tier_changes} tier change(s), {result.errors} error(s)"
    )

    if args.json_out:
        path = Path(args.json_out)
        path.write_text(json.dumps(result.model_dump(), indent=2) + "\n", encoding="utf-8")
        print(f"Wrote summary: {path}")
    return 1 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
