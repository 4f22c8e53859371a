import os
import sys
import tempfile
from pathlib import Path

_TEST_DIR = Path(tempfile.mkdtemp(prefix="auditoryx-tests-"))

os.environ.setdefault("MARKETPLACE_DB_PATH", str(_TEST_DIR / "marketplace.sqlite3"))
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")
os.environ.setdefault("ADMIN_USER_IDS", "admin")
os.environ.setdefault("MAX_ACTIVE_OFFERS", "5")
os.environ.pop("FIREBASE_CREDENTIALS_PATH", None)

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
