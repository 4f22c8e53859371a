import importlib
import importlib.util
import json
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from auditoryx.services.marketplace_store import MarketplaceStore
from auditoryx.services import notification_store as notification_module
from auditoryx.services.notification_store import NotificationStore, notification_store, notify_safely

SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"


def _load_script(name: str):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_auth_ttl_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "not-a-number")
    sys.modules.pop("auditoryx.auth", None)
    auth = importlib.import_module("auditoryx.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_auth_ttl_non_positive_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "0")
    sys.modules.pop("auditoryx.auth", None)
    auth = importlib.import_module("auditoryx.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_max_active_offers_invalid_env_falls_back(monkeypatch, tmp_path):
    monkeypatch.setenv("MAX_ACTIVE_OFFERS", "-3")
    store = MarketplaceStore(db_path=str(tmp_path / "nested" / "dir" / "m.sqlite3"))
    assert store.max_active_offers == 5
    assert (tmp_path / "nested" / "dir").is_dir()


def test_notification_failures_do_not_propagate(monkeypatch):
    def _boom(**kwargs):
        raise RuntimeError("push backend down")

    monkeypatch.setattr(notification_store, "create", _boom)
    assert notify_safely(user_id="u1", title="t", body="b") is None


def test_notifications_are_capped_per_user(monkeypatch):
    monkeypatch.setattr(notification_module, "MAX_NOTIFICATIONS_PER_USER", 3)
    store = NotificationStore()
    store.create(user_id="other", title="keep", body="b")
    for idx in range(5):
        store.create(user_id="u1", title=f"n{idx}", body="b")

    assert [n.title for n in store.list_for_user("u1")] == ["n4", "n3", "n2"]
    assert [n.title for n in store.list_for_user("other")] == ["keep"]


def test_rank_job_cli_writes_summary(tmp_path, monkeypatch, capsys):
    db_path = tmp_path / "cli.sqlite3"
    store = MarketplaceStore(db_path=str(db_path))
    store.upsert_user(user_id="studio_1", display_name="Studio", roles=["studio"])
    out = tmp_path / "summary.json"

    module = _load_script("run_rank_job")
    monkeypatch.setattr(sys, "argv", ["run_rank_job.py", "--db", str(db_path), "--batch-size", "10", "--json-out", str(out)])
    assert module.main() == 0
    assert "Processed 1 creator(s)" in capsys.readouterr().out
    assert json.loads(out.read_text(encoding="utf-8"))["processed"] == 1
    assert store.get_user("studio_1").rank_score == 100.0


def test_transition_report_summarizes_log_lines(tmp_path, monkeypatch, capsys):
    log = tmp_path / "app.log"
    log.write_text(
        "\n".join(
            [
                'INFO x booking_transition={"booking_id": "bk_1", "from": "pending", "to": "accepted"}',
                'INFO x booking_transition={"booking_id": "bk_1", "from": "accepted", "to": "paid"}',
                'INFO x booking_transition={"booking_id": "bk_1", "from": "paid", "to": "completed"}',
                'INFO x booking_transition={"booking_id": "bk_2", "from": "pending", "to": "cancelled"}',
                'INFO x booking_transition={broken',
                'INFO x rank_job={"batches": 1, "errors": 0, "processed": 4, "tier_changes": 2}',
                "unrelated line",
            ]
        ),
        encoding="utf-8",
    )
    module = _load_script("booking_transition_report")
    monkeypatch.setattr(sys, "argv", ["booking_transition_report.py", str(log)])
    assert module.main() == 0
    output = capsys.readouterr().out
    assert "Transitions: 4 across 2 booking(s)" in output
    assert "Completion rate (completed vs cancelled): 50.00%" in output

    report = module.build_report([], [])
    assert report["completion_rate"] == 0.0
    assert report["rank_job"]["runs"] == 0
