#!/usr/bin/env python3
import argparse
import json
import re
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

TRANSITION_PATTERN = re.compile(r"booking_transition=(\{.*\})")
RANK_JOB_PATTERN = re.compile(r"rank_job=(\{.*\})")


def _iter_lines(paths: List[str]) -> Iterable[str]:
    if not paths:
        for line in sys.stdin:
            yield line.rstrip("\n")
        return
    for path in paths:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                yield line.rstrip("\n")


def _parse_payload(pattern: re.Pattern, line: str) -> Optional[Dict[str, Any]]:
    match = pattern.search(line)
    if not match:
        return None
    try:
        value = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def build_report(transitions: List[Dict[str, Any]], rank_runs: List[Dict[str, Any]]) -> Dict[str, Any]:
    edge_counts: Counter[str] = Counter()
    target_counts: Counter[str] = Counter()
    bookings = set()
    for row in transitions:
        source = str(row.get("from", "unknown"))
        target = str(row.get("to", "unknown"))
        edge_counts[f"{source}->{target}"] += 1
        target_counts[target] += 1
        bookings.add(str(row.get("booking_id", "")))

    completed = target_counts.get("completed", 0)
    cancelled = target_counts.get("cancelled", 0)
    closed = completed + cancelled
    return {
        "total_transitions": len(transitions),
        "bookings_seen": len(bookings - {""}),
        "edge_counts": dict(edge_counts.most_common()),
        "completion_rate": round(completed / closed, 4) if closed else 0.0,
        "rank_job": {
            "runs": len(rank_runs),
            "processed": sum(int(row.get("processed", 0) or 0) for row in rank_runs),
            "tier_changes": sum(int(row.get("tier_changes", 0) or 0) for row in rank_runs),
            "errors": sum(int(row.get("errors", 0) or 0) for row in rank_runs),
        },
    }


def print_human(report: Dict[str, Any]) -> None:
    print(f"Transitions: {report['total_transitions']} across {report['bookings_seen']} booking(s)")
    print(f"Completion rate (completed vs cancelled): {report['completion_rate']:.2%}")
    print("Edges:")
    for edge, count in report["edge_counts"].items():
        print(f"  - {edge}: {count}")
    rank = report["rank_job"]
    print(
        f"Rank job: runs={rank['runs']} processed={rank['processed']} "
        f"tier_changes={rank['tier_changes']} errors={rank['errors']}"
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Summarize booking_transition and rank_job log lines.")
    parser.add_argument("log_files", nargs="*", help="Log files to parse. If omitted, read stdin.")
    parser.add_argument("--json-out", default="", help="Optional path to write JSON summary.")
    args = parser.parse_args()

    transitions: List[Dict[str, Any]] = []
    rank_runs: List[Dict[str, Any]] = []
    for line in _iter_lines(args.log_files):
        payload = _parse_payload(TRANSITION_PATTERN, line)
        if payload:
            transitions.append(payload)
            continue
        payload = _parse_payload(RANK_JOB_PATTERN, line)
        if payload:
            rank_runs.append(payload)

    report = build_report(transitions, rank_runs)
    print_human(report)

    if args.json_out:
        path = Path(args.json_out)
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        print(f"Wrote report: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
