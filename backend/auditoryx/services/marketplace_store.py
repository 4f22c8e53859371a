import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

from auditoryx.models import (
    Booking,
    BookingCreateRequest,
    BookingStatusHistoryEntry,
    CompletionResult,
    Contract,
    Dispute,
    EscrowRecord,
    Offer,
    OfferAddon,
    OfferCreateRequest,
    OfferSnapshot,
    OfferUpdateRequest,
    Review,
    UserProfile,
)
from auditoryx.services import booking_lifecycle as lifecycle
from auditoryx.services.errors import (
    MarketplaceConflictError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceValidationError,
)
from auditoryx.services.rank_scorer import (
    XP_PER_COMPLETED_BOOKING,
    RankOutcome,
    new_milestone_badges,
    running_average,
)
from auditoryx.services.refund_policy import RefundQuote, quote_refund

logger = logging.getLogger(__name__)

CREATOR_ROLES = {"artist", "producer", "engineer", "videographer", "studio", "creator"}

DEFAULT_ADMIN_USERS = {"admin"}

CREDIT_SOURCE_CLIENT_CONFIRMED = "client-confirmed"

REVIEW_TEXT_MIN = 10
REVIEW_TEXT_MAX = 1000


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str, *, field: str = "timestamp") -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise MarketplaceValidationError(f"Invalid {field}; expected ISO-8601 datetime") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class MarketplaceStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        configured_admins = {value.strip() for value in os.getenv("ADMIN_USER_IDS", "").split(",") if value.strip()}
        self._admin_user_ids: Set[str] = configured_admins or set(DEFAULT_ADMIN_USERS)
        self.max_active_offers = env_int("MAX_ACTIVE_OFFERS", 5)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        display_name TEXT NOT NULL,
                        roles_json TEXT NOT NULL DEFAULT '[]',
                        is_creator INTEGER NOT NULL DEFAULT 0,
                        tier TEXT NOT NULL DEFAULT 'standard',
                        xp INTEGER NOT NULL DEFAULT 0,
                        average_rating REAL NOT NULL DEFAULT 0.0,
                        review_count INTEGER NOT NULL DEFAULT 0,
                        response_hrs REAL,
                        response_count INTEGER NOT NULL DEFAULT 0,
                        late_deliveries INTEGER NOT NULL DEFAULT 0,
                        open_disputes INTEGER NOT NULL DEFAULT 0,
                        tier_frozen INTEGER NOT NULL DEFAULT 0,
                        rank_score REAL NOT NULL DEFAULT 0.0,
                        completed_bookings INTEGER NOT NULL DEFAULT 0,
                        badges_json TEXT NOT NULL DEFAULT '[]',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS offers (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        role TEXT NOT NULL,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL,
                        price REAL NOT NULL,
                        currency TEXT NOT NULL,
                        turnaround_days INTEGER NOT NULL,
                        revisions INTEGER NOT NULL,
                        deliverables_json TEXT NOT NULL,
                        addons_json TEXT NOT NULL DEFAULT '[]',
                        usage_policy TEXT NOT NULL DEFAULT '',
                        active INTEGER NOT NULL DEFAULT 0,
                        status TEXT NOT NULL DEFAULT 'draft',
                        bookings INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS bookings (
                        id TEXT PRIMARY KEY,
                        client_id TEXT NOT NULL,
                        provider_id TEXT NOT NULL,
                        offer_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        offer_snapshot_json TEXT NOT NULL,
                        contract_terms TEXT NOT NULL,
                        agreed_by_client INTEGER NOT NULL DEFAULT 0,
                        agreed_by_provider INTEGER NOT NULL DEFAULT 0,
                        client_agreed_at TEXT,
                        provider_agreed_at TEXT,
                        amount REAL NOT NULL,
                        currency TEXT NOT NULL,
                        scheduled_at TEXT NOT NULL,
                        message TEXT NOT NULL DEFAULT '',
                        is_paid INTEGER NOT NULL DEFAULT 0,
                        credit_awarded INTEGER NOT NULL DEFAULT 0,
                        processed INTEGER NOT NULL DEFAULT 0,
                        credit_source TEXT,
                        cancellation_reason TEXT,
                        refund_amount REAL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        accepted_at TEXT,
                        paid_at TEXT,
                        confirmed_at TEXT,
                        completed_at TEXT,
                        cancelled_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS booking_status_history (
                        id TEXT PRIMARY KEY,
                        booking_id TEXT NOT NULL,
                        actor_user_id TEXT NOT NULL,
                        from_status TEXT NOT NULL,
                        to_status TEXT NOT NULL,
                        note TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS escrows (
                        booking_id TEXT PRIMARY KEY,
                        status TEXT NOT NULL,
                        amount REAL NOT NULL,
                        currency TEXT NOT NULL,
                        payment_reference TEXT NOT NULL DEFAULT '',
                        refunded_amount REAL NOT NULL DEFAULT 0.0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS reviews (
                        id TEXT PRIMARY KEY,
                        booking_id TEXT NOT NULL,
                        author_id TEXT NOT NULL,
                        target_id TEXT NOT NULL,
                        rating INTEGER NOT NULL,
                        text TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        UNIQUE (booking_id, author_id)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS disputes (
                        id TEXT PRIMARY KEY,
                        booking_id TEXT NOT NULL,
                        raised_by TEXT NOT NULL,
                        provider_id TEXT NOT NULL,
                        reason TEXT NOT NULL,
                        status TEXT NOT NULL,
                        resolution TEXT,
                        resolved_by TEXT,
                        note TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL,
                        resolved_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS payment_events (
                        event_id TEXT PRIMARY KEY,
                        event_type TEXT NOT NULL,
                        booking_id TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_bookings_provider ON bookings (provider_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_bookings_client ON bookings (client_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_users_creator ON users (is_creator, id)")
                conn.commit()

    def is_admin(self, user_id: str) -> bool:
        return user_id in self._admin_user_ids

    # -- users -------------------------------------------------------------

    def _row_to_user(self, row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            id=row["id"],
            display_name=row["display_name"],
            roles=self._safe_json_list(row["roles_json"]),
            tier=row["tier"],
            xp=int(row["xp"]),
            average_rating=float(row["average_rating"]),
            review_count=int(row["review_count"]),
            response_hrs=row["response_hrs"],
            response_count=int(row["response_count"]),
            late_deliveries=int(row["late_deliveries"]),
            open_disputes=int(row["open_disputes"]),
            tier_frozen=bool(row["tier_frozen"]),
            rank_score=float(row["rank_score"]),
            completed_bookings=int(row["completed_bookings"]),
            badges=self._safe_json_list(row["badges_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _ensure_user_row(self, conn: sqlite3.Connection, user_id: str, role: Optional[str] = None) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        now = _utcnow().isoformat()
        if not row:
            roles = [role] if role else []
            conn.execute(
                """
                INSERT INTO users (id, display_name, roles_json, is_creator, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, user_id, json.dumps(roles), 1 if CREATOR_ROLES.intersection(roles) else 0, now, now),
            )
        elif role:
            roles = self._safe_json_list(row["roles_json"])
            if role not in roles:
                roles.append(role)
                conn.execute(
                    "UPDATE users SET roles_json = ?, is_creator = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(roles), 1 if CREATOR_ROLES.intersection(roles) else 0, now, user_id),
                )
        return conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()

    def upsert_user(self, *, user_id: str, display_name: str, roles: Sequence[str]) -> UserProfile:
        user_id = user_id.strip()
        if not user_id:
            raise MarketplaceValidationError("user_id is required")
        cleaned_roles = sorted({role.strip().lower() for role in roles if role.strip()})
        now = _utcnow().isoformat()
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, display_name, roles_json, is_creator, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        display_name = excluded.display_name,
                        roles_json = excluded.roles_json,
                        is_creator = excluded.is_creator,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        display_name.strip(),
                        json.dumps(cleaned_roles),
                        1 if CREATOR_ROLES.intersection(cleaned_roles) else 0,
                        now,
                        now,
                    ),
                )
                conn.commit()
                row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row)

    def get_user(self, user_id: str) -> UserProfile:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("User not found")
        return self._row_to_user(row)

    def list_creator_page(self, *, after_user_id: Optional[str], limit: int) -> List[UserProfile]:
        with self._lock:
            with self._connect() as conn:
                if after_user_id is None:
                    rows = conn.execute(
                        "SELECT * FROM users WHERE is_creator = 1 ORDER BY id LIMIT ?",
                        (limit,),
                    ).fetchall()
                else:
                    rows = conn.execute(
                        "SELECT * FROM users WHERE is_creator = 1 AND id > ? ORDER BY id LIMIT ?",
                        (after_user_id, limit),
                    ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def apply_rank_updates(self, updates: Sequence[Tuple[str, RankOutcome]]) -> None:
        """Write one page of rank results atomically."""
        if not updates:
            return
        now = _utcnow().isoformat()
        with self._lock:
            conn = self._connect()
            try:
                # Freeze follows open_disputes at write time, not the page snapshot.
                conn.executemany(
                    """
                    UPDATE users
                    SET tier = CASE WHEN open_disputes > 0 THEN tier ELSE ? END,
                        rank_score = ?,
                        tier_frozen = CASE WHEN open_disputes > 0 THEN 1 ELSE 0 END,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    [
                        (outcome.tier, outcome.rank_score, now, user_id)
                        for user_id, outcome in updates
                    ],
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

    def leaderboard(self, *, tier: Optional[str] = None, limit: int = 20) -> List[UserProfile]:
        query = "SELECT * FROM users WHERE is_creator = 1"
        params: List[Any] = []
        if tier:
            query += " AND tier = ?"
            params.append(tier)
        query += " ORDER BY rank_score DESC, id ASC LIMIT ?"
        params.append(limit)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_user(row) for row in rows]

    # -- offers ------------------------------------------------------------

    def _row_to_offer(self, row: sqlite3.Row) -> Offer:
        return Offer(
            id=row["id"],
            user_id=row["user_id"],
            role=row["role"],
            title=row["title"],
            description=row["description"],
            price=float(row["price"]),
            currency=row["currency"],
            turnaround_days=int(row["turnaround_days"]),
            revisions=int(row["revisions"]),
            deliverables=self._safe_json_list(row["deliverables_json"]),
            addons=[OfferAddon(**item) for item in self._safe_json_list(row["addons_json"]) if isinstance(item, dict)],
            usage_policy=row["usage_policy"],
            active=bool(row["active"]),
            status=row["status"],
            bookings=int(row["bookings"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _count_active_offers(self, conn: sqlite3.Connection, user_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) AS total FROM offers WHERE user_id = ? AND active = 1", (user_id,)).fetchone()
        return int(row["total"]) if row else 0

    def create_offer(self, request: OfferCreateRequest) -> Offer:
        deliverables = [item.strip() for item in request.deliverables if item.strip()]
        if not deliverables:
            raise MarketplaceValidationError("At least one deliverable is required")
        now = _utcnow().isoformat()
        offer_id = f"off_{uuid4().hex[:10]}"
        with self._lock:
            with self._connect() as conn:
                if self._count_active_offers(conn, request.user_id) >= self.max_active_offers:
                    raise MarketplaceValidationError(
                        f"Maximum active offers limit reached ({self.max_active_offers})"
                    )
                self._ensure_user_row(conn, request.user_id, role=request.role)
                conn.execute(
                    """
                    INSERT INTO offers (
                        id, user_id, role, title, description, price, currency, turnaround_days, revisions,
                        deliverables_json, addons_json, usage_policy, active, status, bookings, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 'draft', 0, ?, ?)
                    """,
                    (
                        offer_id,
                        request.user_id,
                        request.role,
                        request.title.strip(),
                        request.description.strip(),
                        request.price,
                        request.currency,
                        request.turnaround_days,
                        request.revisions,
                        json.dumps(deliverables),
                        json.dumps([addon.model_dump() for addon in request.addons]),
                        request.usage_policy,
                        now,
                        now,
                    ),
                )
                conn.commit()
                row = conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
        return self._row_to_offer(row)

    def get_offer(self, offer_id: str) -> Offer:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Offer not found")
        return self._row_to_offer(row)

    def list_offers(
        self,
        *,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        active: Optional[bool] = None,
        limit: int = 20,
        after: Optional[str] = None,
    ) -> List[Offer]:
        query = "SELECT * FROM offers WHERE status != 'deleted'"
        params: List[Any] = []
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        if role:
            query += " AND role = ?"
            params.append(role)
        if active is not None:
            query += " AND active = ?"
            params.append(1 if active else 0)
        with self._lock:
            with self._connect() as conn:
                if after:
                    cursor = conn.execute("SELECT created_at FROM offers WHERE id = ?", (after,)).fetchone()
                    if cursor:
                        query += " AND (created_at < ? OR (created_at = ? AND id < ?))"
                        params.extend([cursor["created_at"], cursor["created_at"], after])
                query += " ORDER BY created_at DESC, id DESC LIMIT ?"
                params.append(limit)
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_offer(row) for row in rows]

    def update_offer(self, offer_id: str, update: OfferUpdateRequest) -> Offer:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
                if not row or row["status"] == "deleted":
                    raise MarketplaceNotFoundError("Offer not found")
                if row["user_id"] != update.user_id:
                    raise MarketplacePermissionError("Only the offer owner can edit this offer")

                changes: Dict[str, Any] = {}
                for field in ("title", "description", "price", "currency", "turnaround_days", "revisions", "usage_policy"):
                    value = getattr(update, field)
                    if value is not None:
                        changes[field] = value.strip() if isinstance(value, str) else value
                if update.deliverables is not None:
                    deliverables = [item.strip() for item in update.deliverables if item.strip()]
                    if not deliverables:
                        raise MarketplaceValidationError("At least one deliverable is required")
                    changes["deliverables_json"] = json.dumps(deliverables)
                if update.addons is not None:
                    changes["addons_json"] = json.dumps([addon.model_dump() for addon in update.addons])
                if update.active is not None:
                    if update.active and not row["active"]:
                        if self._count_active_offers(conn, update.user_id) >= self.max_active_offers:
                            raise MarketplaceValidationError(
                                f"Maximum active offers limit reached ({self.max_active_offers})"
                            )
                    changes["active"] = 1 if update.active else 0
                    changes["status"] = "active" if update.active else "inactive"

                changes["updated_at"] = _utcnow().isoformat()
                assignments = ", ".join(f"{column} = ?" for column in changes)
                conn.execute(f"UPDATE offers SET {assignments} WHERE id = ?", (*changes.values(), offer_id))
                conn.commit()
                updated = conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
        return self._row_to_offer(updated)

    def delete_offer(self, *, offer_id: str, actor_user_id: str) -> str:
        """Hard-delete an unused offer; offers with bookings are only deactivated."""
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM offers WHERE id = ?", (offer_id,)).fetchone()
                if not row or row["status"] == "deleted":
                    raise MarketplaceNotFoundError("Offer not found")
                if row["user_id"] != actor_user_id:
                    raise MarketplacePermissionError("Only the offer owner can delete this offer")
                if int(row["bookings"]) > 0:
                    conn.execute(
                        "UPDATE offers SET active = 0, status = 'deleted', updated_at = ? WHERE id = ?",
                        (_utcnow().isoformat(), offer_id),
                    )
                    conn.commit()
                    return "deactivated"
                conn.execute("DELETE FROM offers WHERE id = ?", (offer_id,))
                conn.commit()
                return "deleted"

    # -- bookings ----------------------------------------------------------

    def _row_to_booking(self, row: sqlite3.Row) -> Booking:
        return Booking(
            id=row["id"],
            client_id=row["client_id"],
            provider_id=row["provider_id"],
            offer_id=row["offer_id"],
            status=row["status"],
            offer_snapshot=OfferSnapshot(**self._safe_json_object(row["offer_snapshot_json"])),
            contract=Contract(
                terms=row["contract_terms"],
                agreed_by_client=bool(row["agreed_by_client"]),
                agreed_by_provider=bool(row["agreed_by_provider"]),
                client_agreed_at=row["client_agreed_at"],
                provider_agreed_at=row["provider_agreed_at"],
            ),
            amount=float(row["amount"]),
            currency=row["currency"],
            scheduled_at=row["scheduled_at"],
            message=row["message"],
            is_paid=bool(row["is_paid"]),
            credit_awarded=bool(row["credit_awarded"]),
            processed=bool(row["processed"]),
            credit_source=row["credit_source"],
            cancellation_reason=row["cancellation_reason"],
            refund_amount=row["refund_amount"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            accepted_at=row["accepted_at"],
            paid_at=row["paid_at"],
            confirmed_at=row["confirmed_at"],
            completed_at=row["completed_at"],
            cancelled_at=row["cancelled_at"],
        )

    def _load_booking_row(self, conn: sqlite3.Connection, booking_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Booking not found")
        return row

    def _transition(
        self,
        conn: sqlite3.Connection,
        row: sqlite3.Row,
        target: str,
        *,
        actor_user_id: str,
        note: str,
        now: datetime,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        """Apply one status change; the caller logs the returned event after commit."""
        current = str(row["status"])
        lifecycle.assert_transition(current, target)
        changes: Dict[str, Any] = {"status": target, "updated_at": now.isoformat()}
        timestamp_column = {
            lifecycle.ACCEPTED: "accepted_at",
            lifecycle.PAID: "paid_at",
            lifecycle.CONFIRMED: "confirmed_at",
            lifecycle.COMPLETED: "completed_at",
            lifecycle.CANCELLED: "cancelled_at",
        }.get(target)
        if timestamp_column:
            changes[timestamp_column] = now.isoformat()
        if extra:
            changes.update(extra)
        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn.execute(f"UPDATE bookings SET {assignments} WHERE id = ?", (*changes.values(), row["id"]))
        conn.execute(
            """
            INSERT INTO booking_status_history (id, booking_id, actor_user_id, from_status, to_status, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (f"bsh_{uuid4().hex[:10]}", row["id"], actor_user_id, current, target, note, now.isoformat()),
        )
        return {"booking_id": str(row["id"]), "from": current, "to": target, "actor": actor_user_id}

    def _log_transition(self, event: Dict[str, str]) -> None:
        logger.info("booking_transition=%s", json.dumps(event, sort_keys=True))

    def _build_contract_terms(self, snapshot: OfferSnapshot, amount: float) -> str:
        deliverables = "; ".join(snapshot.deliverables)
        terms = (
            f"{snapshot.title}. Deliverables: {deliverables}. "
            f"Revisions: {snapshot.revisions}. Delivery within {snapshot.turnaround_days} day(s) of payment. "
            f"Total: {amount:.2f} {snapshot.currency}."
        )
        if snapshot.usage_policy:
            terms += f" Usage: {snapshot.usage_policy}"
        return terms

    def create_booking(self, request: BookingCreateRequest, now: Optional[datetime] = None) -> Booking:
        now = now or _utcnow()
        scheduled_at = _parse_timestamp(request.scheduled_at, field="scheduled_at")
        if scheduled_at <= now:
            raise MarketplaceValidationError("scheduled_at must be in the future")

        with self._lock:
            with self._connect() as conn:
                offer_row = conn.execute("SELECT * FROM offers WHERE id = ?", (request.offer_id,)).fetchone()
                if not offer_row or offer_row["status"] == "deleted":
                    raise MarketplaceNotFoundError("Offer not found")
                offer = self._row_to_offer(offer_row)
                if not offer.active:
                    raise MarketplaceValidationError("Offer is not accepting bookings")
                if offer.user_id == request.client_id:
                    raise MarketplaceValidationError("You cannot book your own offer")

                addons_by_name = {addon.name: addon for addon in offer.addons}
                unknown = [name for name in request.addon_names if name not in addons_by_name]
                if unknown:
                    raise MarketplaceValidationError(f"Unknown addon(s): {', '.join(unknown)}")
                chosen = {addon.name for addon in offer.addons if addon.required} | set(request.addon_names)
                amount = round(offer.price + sum(addons_by_name[name].price for name in chosen), 2)

                snapshot = OfferSnapshot(
                    offer_id=offer.id,
                    role=offer.role,
                    title=offer.title,
                    description=offer.description,
                    price=offer.price,
                    currency=offer.currency,
                    turnaround_days=offer.turnaround_days,
                    revisions=offer.revisions,
                    deliverables=list(offer.deliverables),
                    addons=list(offer.addons),
                    usage_policy=offer.usage_policy,
                    captured_at=now.isoformat(),
                )
                booking_id = f"bk_{uuid4().hex[:10]}"
                self._ensure_user_row(conn, request.client_id)
                conn.execute(
                    """
                    INSERT INTO bookings (
                        id, client_id, provider_id, offer_id, status, offer_snapshot_json, contract_terms,
                        amount, currency, scheduled_at, message, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        booking_id,
                        request.client_id,
                        offer.user_id,
                        offer.id,
                        lifecycle.PENDING,
                        snapshot.model_dump_json(),
                        self._build_contract_terms(snapshot, amount),
                        amount,
                        offer.currency,
                        scheduled_at.isoformat(),
                        request.message.strip(),
                        now.isoformat(),
                        now.isoformat(),
                    ),
                )
                conn.execute(
                    """
                    INSERT INTO booking_status_history (id, booking_id, actor_user_id, from_status, to_status, note, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        f"bsh_{uuid4().hex[:10]}",
                        booking_id,
                        request.client_id,
                        "none",
                        lifecycle.PENDING,
                        "booking requested",
                        now.isoformat(),
                    ),
                )
                conn.execute(
                    "UPDATE offers SET bookings = bookings + 1, updated_at = ? WHERE id = ?",
                    (now.isoformat(), offer.id),
                )
                conn.commit()
                row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        self._log_transition(
            {"booking_id": booking_id, "from": "none", "to": lifecycle.PENDING, "actor": request.client_id}
        )
        return self._row_to_booking(row)

    def get_booking(self, booking_id: str) -> Booking:
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
        return self._row_to_booking(row)

    def list_bookings(
        self,
        *,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Booking]:
        normalized_role = role.strip().lower() if role else None
        if normalized_role not in {None, "all", "client", "provider"}:
            raise MarketplaceValidationError("Invalid role value. Allowed: all, client, provider")
        if status and status not in lifecycle.BOOKING_STATUSES:
            raise MarketplaceValidationError(f"Invalid status filter: {status}")

        query = "SELECT * FROM bookings WHERE 1 = 1"
        params: List[Any] = []
        if user_id and normalized_role == "client":
            query += " AND client_id = ?"
            params.append(user_id)
        elif user_id and normalized_role == "provider":
            query += " AND provider_id = ?"
            params.append(user_id)
        elif user_id:
            query += " AND (client_id = ? OR provider_id = ?)"
            params.extend([user_id, user_id])
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_booking(row) for row in rows]

    def list_booking_history(self, booking_id: str) -> List[BookingStatusHistoryEntry]:
        with self._lock:
            with self._connect() as conn:
                self._load_booking_row(conn, booking_id)
                rows = conn.execute(
                    "SELECT * FROM booking_status_history WHERE booking_id = ? ORDER BY created_at, rowid",
                    (booking_id,),
                ).fetchall()
        return [
            BookingStatusHistoryEntry(
                id=row["id"],
                booking_id=row["booking_id"],
                actor_user_id=row["actor_user_id"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                note=row["note"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def respond_to_booking(
        self,
        *,
        booking_id: str,
        actor_user_id: str,
        decision: str,
        note: str = "",
        now: Optional[datetime] = None,
    ) -> Booking:
        if decision not in {lifecycle.ACCEPTED, lifecycle.REJECTED}:
            raise MarketplaceValidationError("Invalid decision. Allowed: accepted, rejected")
        now = now or _utcnow()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                lifecycle.assert_provider_action(row["provider_id"], actor_user_id, decision)
                event = self._transition(conn, row, decision, actor_user_id=actor_user_id, note=note, now=now)

                hours = max((now - _parse_timestamp(row["created_at"])).total_seconds() / 3600, 0.0)
                provider = self._ensure_user_row(conn, row["provider_id"])
                conn.execute(
                    "UPDATE users SET response_hrs = ?, response_count = response_count + 1, updated_at = ? WHERE id = ?",
                    (
                        running_average(provider["response_hrs"], int(provider["response_count"]), hours),
                        now.isoformat(),
                        row["provider_id"],
                    ),
                )
                conn.commit()
                updated = self._load_booking_row(conn, booking_id)
        self._log_transition(event)
        return self._row_to_booking(updated)

    def mark_paid(
        self,
        *,
        event_id: str,
        event_type: str,
        booking_id: str,
        amount: Optional[float] = None,
        payment_reference: str = "",
        now: Optional[datetime] = None,
    ) -> Tuple[str, Booking]:
        """Apply a payment-succeeded event. Returns ("processed" | "duplicate", booking)."""
        now = now or _utcnow()
        with self._lock:
            with self._connect() as conn:
                seen = conn.execute("SELECT event_id FROM payment_events WHERE event_id = ?", (event_id,)).fetchone()
                row = self._load_booking_row(conn, booking_id)
                if seen:
                    return "duplicate", self._row_to_booking(row)

                if row["is_paid"]:
                    conn.execute(
                        "INSERT INTO payment_events (event_id, event_type, booking_id, created_at) VALUES (?, ?, ?, ?)",
                        (event_id, event_type, booking_id, now.isoformat()),
                    )
                    conn.commit()
                    return "duplicate", self._row_to_booking(row)

                if amount is not None and abs(float(amount) - float(row["amount"])) > 0.01:
                    raise MarketplaceValidationError(
                        f"Payment amount {amount:.2f} does not match booking amount {float(row['amount']):.2f}"
                    )

                event = self._transition(
                    conn,
                    row,
                    lifecycle.PAID,
                    actor_user_id="system",
                    note=f"payment event {event_id}",
                    now=now,
                    extra={"is_paid": 1},
                )
                conn.execute(
                    """
                    INSERT INTO escrows (booking_id, status, amount, currency, payment_reference, refunded_amount, created_at, updated_at)
                    VALUES (?, 'held', ?, ?, ?, 0.0, ?, ?)
                    ON CONFLICT(booking_id) DO UPDATE SET
                        status = 'held',
                        amount = excluded.amount,
                        payment_reference = excluded.payment_reference,
                        updated_at = excluded.updated_at
                    """,
                    (booking_id, row["amount"], row["currency"], payment_reference, now.isoformat(), now.isoformat()),
                )
                conn.execute(
                    "INSERT INTO payment_events (event_id, event_type, booking_id, created_at) VALUES (?, ?, ?, ?)",
                    (event_id, event_type, booking_id, now.isoformat()),
                )
                conn.commit()
                updated = self._load_booking_row(conn, booking_id)
        self._log_transition(event)
        return "processed", self._row_to_booking(updated)

    def confirm_booking(self, *, booking_id: str, actor_user_id: str, note: str = "") -> Booking:
        now = _utcnow()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                lifecycle.assert_party(row["client_id"], row["provider_id"], actor_user_id)
                event = self._transition(
                    conn, row, lifecycle.CONFIRMED, actor_user_id=actor_user_id, note=note or "booking confirmed", now=now
                )
                conn.commit()
                updated = self._load_booking_row(conn, booking_id)
        self._log_transition(event)
        return self._row_to_booking(updated)

    def agree_contract(self, *, booking_id: str, actor_user_id: str) -> Booking:
        now = _utcnow().isoformat()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                role = lifecycle.assert_party(row["client_id"], row["provider_id"], actor_user_id)
                lifecycle.assert_contract_signable(str(row["status"]))
                flag, stamp = ("agreed_by_client", "client_agreed_at") if role == "client" else (
                    "agreed_by_provider",
                    "provider_agreed_at",
                )
                if not row[flag]:
                    conn.execute(
                        f"UPDATE bookings SET {flag} = 1, {stamp} = ?, updated_at = ? WHERE id = ?",
                        (now, now, booking_id),
                    )
                    conn.commit()
                updated = self._load_booking_row(conn, booking_id)
        return self._row_to_booking(updated)

    def _award_completion_credit(
        self, conn: sqlite3.Connection, row: sqlite3.Row, now: datetime
    ) -> Tuple[int, List[str]]:
        provider = self._ensure_user_row(conn, row["provider_id"])
        completed = int(provider["completed_bookings"]) + 1
        badges = self._safe_json_list(provider["badges_json"])
        awarded = new_milestone_badges(completed, badges)

        late = 0
        snapshot = self._safe_json_object(row["offer_snapshot_json"])
        if row["paid_at"]:
            due = _parse_timestamp(row["paid_at"]) + timedelta(days=int(snapshot.get("turnaround_days", 0) or 0))
            if now > due:
                late = 1

        conn.execute(
            """
            UPDATE users
            SET xp = xp + ?, completed_bookings = ?, badges_json = ?, late_deliveries = late_deliveries + ?, updated_at = ?
            WHERE id = ?
            """,
            (XP_PER_COMPLETED_BOOKING, completed, json.dumps(badges + awarded), late, now.isoformat(), row["provider_id"]),
        )
        conn.execute(
            "UPDATE bookings SET processed = 1, credit_awarded = 1, credit_source = ?, updated_at = ? WHERE id = ?",
            (CREDIT_SOURCE_CLIENT_CONFIRMED, now.isoformat(), row["id"]),
        )
        logger.info(
            "Credited provider %s for booking %s: +%s xp, badges=%s, late=%s",
            row["provider_id"],
            row["id"],
            XP_PER_COMPLETED_BOOKING,
            awarded,
            bool(late),
        )
        return XP_PER_COMPLETED_BOOKING, awarded

    def complete_booking(
        self,
        *,
        booking_id: str,
        actor_user_id: str,
        note: str = "",
        now: Optional[datetime] = None,
        acting_as_admin: bool = False,
    ) -> CompletionResult:
        """Release escrow and mark the booking completed, crediting the provider once."""
        now = now or _utcnow()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                if actor_user_id != row["client_id"] and not acting_as_admin:
                    raise MarketplacePermissionError("Only the client can release funds for this booking")

                if row["status"] == lifecycle.COMPLETED:
                    if not lifecycle.should_award_credit(bool(row["is_paid"]), bool(row["processed"])):
                        logger.info("Credit already awarded for booking %s", booking_id)
                        return CompletionResult(booking=self._row_to_booking(row), credit_awarded_now=False)
                    xp, badges = self._award_completion_credit(conn, row, now)
                    conn.commit()
                    updated = self._load_booking_row(conn, booking_id)
                    return CompletionResult(
                        booking=self._row_to_booking(updated), credit_awarded_now=True, xp_awarded=xp, new_badges=badges
                    )

                lifecycle.assert_transition(str(row["status"]), lifecycle.COMPLETED)
                lifecycle.assert_contract_agreed(bool(row["agreed_by_client"]), bool(row["agreed_by_provider"]))

                escrow = conn.execute("SELECT status FROM escrows WHERE booking_id = ?", (booking_id,)).fetchone()
                if not escrow or escrow["status"] != "held":
                    raise MarketplaceConflictError("No held escrow to release for this booking")
                conn.execute(
                    "UPDATE escrows SET status = 'released', updated_at = ? WHERE booking_id = ?",
                    (now.isoformat(), booking_id),
                )
                event = self._transition(
                    conn, row, lifecycle.COMPLETED, actor_user_id=actor_user_id, note=note or "funds released", now=now
                )

                xp, badges = 0, []
                credited = lifecycle.should_award_credit(bool(row["is_paid"]), bool(row["processed"]))
                if credited:
                    row = self._load_booking_row(conn, booking_id)
                    xp, badges = self._award_completion_credit(conn, row, now)
                else:
                    logger.info("Booking %s completed but not paid - skipping credit award", booking_id)
                conn.commit()
                updated = self._load_booking_row(conn, booking_id)
        self._log_transition(event)
        return CompletionResult(
            booking=self._row_to_booking(updated), credit_awarded_now=credited, xp_awarded=xp, new_badges=badges
        )

    def _provider_tier(self, conn: sqlite3.Connection, provider_id: str) -> str:
        row = conn.execute("SELECT tier FROM users WHERE id = ?", (provider_id,)).fetchone()
        return str(row["tier"]) if row else "standard"

    def _quote_for_row(self, conn: sqlite3.Connection, row: sqlite3.Row, now: datetime) -> RefundQuote:
        return quote_refund(
            amount=float(row["amount"]),
            scheduled_at=_parse_timestamp(row["scheduled_at"]),
            provider_tier=self._provider_tier(conn, row["provider_id"]),
            paid=bool(row["is_paid"]),
            now=now,
        )

    def quote_cancellation(
        self, *, booking_id: str, actor_user_id: str, now: Optional[datetime] = None
    ) -> Tuple[Booking, RefundQuote]:
        now = now or _utcnow()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                lifecycle.assert_party(row["client_id"], row["provider_id"], actor_user_id)
                lifecycle.assert_transition(str(row["status"]), lifecycle.CANCELLED)
                quote = self._quote_for_row(conn, row, now)
        return self._row_to_booking(row), quote

    def cancel_booking(
        self,
        *,
        booking_id: str,
        actor_user_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Booking, RefundQuote]:
        now = now or _utcnow()
        reason = reason.strip()
        if not reason:
            raise MarketplaceValidationError("Cancellation reason is required")
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                lifecycle.assert_party(row["client_id"], row["provider_id"], actor_user_id)
                lifecycle.assert_transition(str(row["status"]), lifecycle.CANCELLED)
                quote = self._quote_for_row(conn, row, now)
                if not quote.can_cancel:
                    raise MarketplaceValidationError(quote.reason)

                if row["status"] in lifecycle.ESCROW_HELD_STATUSES:
                    conn.execute(
                        "UPDATE escrows SET status = 'refunded', refunded_amount = ?, updated_at = ? WHERE booking_id = ?",
                        (quote.refund_amount, now.isoformat(), booking_id),
                    )
                event = self._transition(
                    conn,
                    row,
                    lifecycle.CANCELLED,
                    actor_user_id=actor_user_id,
                    note=reason,
                    now=now,
                    extra={"cancellation_reason": reason, "refund_amount": quote.refund_amount},
                )
                conn.commit()
                updated = self._load_booking_row(conn, booking_id)
        self._log_transition(event)
        return self._row_to_booking(updated), quote

    def get_escrow(self, booking_id: str) -> EscrowRecord:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM escrows WHERE booking_id = ?", (booking_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Escrow record not found")
        return EscrowRecord(
            booking_id=row["booking_id"],
            status=row["status"],
            amount=float(row["amount"]),
            currency=row["currency"],
            payment_reference=row["payment_reference"],
            refunded_amount=float(row["refunded_amount"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -- reviews & disputes --------------------------------------------------

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        return Review(
            id=row["id"],
            booking_id=row["booking_id"],
            author_id=row["author_id"],
            target_id=row["target_id"],
            rating=int(row["rating"]),
            text=row["text"],
            created_at=row["created_at"],
        )

    def create_review(self, *, booking_id: str, author_id: str, rating: int, text: str) -> Review:
        text = text.strip()
        if len(text) < REVIEW_TEXT_MIN or len(text) > REVIEW_TEXT_MAX:
            raise MarketplaceValidationError(
                f"Review text must be between {REVIEW_TEXT_MIN} and {REVIEW_TEXT_MAX} characters"
            )
        if rating < 1 or rating > 5:
            raise MarketplaceValidationError("rating must be between 1 and 5")
        now = _utcnow().isoformat()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                role = lifecycle.assert_party(row["client_id"], row["provider_id"], author_id)
                lifecycle.assert_post_completion(str(row["status"]), "Reviews")
                existing = conn.execute(
                    "SELECT id FROM reviews WHERE booking_id = ? AND author_id = ?",
                    (booking_id, author_id),
                ).fetchone()
                if existing:
                    raise MarketplaceConflictError("Review already exists for this booking")

                target_id = row["provider_id"] if role == "client" else row["client_id"]
                review_id = f"rev_{uuid4().hex[:10]}"
                conn.execute(
                    """
                    INSERT INTO reviews (id, booking_id, author_id, target_id, rating, text, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (review_id, booking_id, author_id, target_id, rating, text, now),
                )
                target = self._ensure_user_row(conn, target_id)
                conn.execute(
                    "UPDATE users SET average_rating = ?, review_count = review_count + 1, updated_at = ? WHERE id = ?",
                    (
                        running_average(float(target["average_rating"]), int(target["review_count"]), float(rating)),
                        now,
                        target_id,
                    ),
                )
                conn.commit()
                created = conn.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
        return self._row_to_review(created)

    def list_reviews(
        self,
        *,
        target_id: Optional[str] = None,
        author_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[Review]:
        query = "SELECT * FROM reviews WHERE 1 = 1"
        params: List[Any] = []
        for column, value in (("target_id", target_id), ("author_id", author_id), ("booking_id", booking_id)):
            if value:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_review(row) for row in rows]

    def _row_to_dispute(self, row: sqlite3.Row) -> Dispute:
        return Dispute(
            id=row["id"],
            booking_id=row["booking_id"],
            raised_by=row["raised_by"],
            provider_id=row["provider_id"],
            reason=row["reason"],
            status=row["status"],
            resolution=row["resolution"],
            resolved_by=row["resolved_by"],
            note=row["note"],
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
        )

    def raise_dispute(self, *, booking_id: str, actor_user_id: str, reason: str) -> Dispute:
        now = _utcnow().isoformat()
        with self._lock:
            with self._connect() as conn:
                row = self._load_booking_row(conn, booking_id)
                lifecycle.assert_party(row["client_id"], row["provider_id"], actor_user_id)
                lifecycle.assert_post_completion(str(row["status"]), "Disputes")
                open_row = conn.execute(
                    "SELECT id FROM disputes WHERE booking_id = ? AND status = 'open'",
                    (booking_id,),
                ).fetchone()
                if open_row:
                    raise MarketplaceConflictError("An open dispute already exists for this booking")

                dispute_id = f"dsp_{uuid4().hex[:10]}"
                conn.execute(
                    """
                    INSERT INTO disputes (id, booking_id, raised_by, provider_id, reason, status, created_at)
                    VALUES (?, ?, ?, ?, ?, 'open', ?)
                    """,
                    (dispute_id, booking_id, actor_user_id, row["provider_id"], reason.strip(), now),
                )
                self._ensure_user_row(conn, row["provider_id"])
                conn.execute(
                    "UPDATE users SET open_disputes = open_disputes + 1, tier_frozen = 1, updated_at = ? WHERE id = ?",
                    (now, row["provider_id"]),
                )
                conn.commit()
                created = conn.execute("SELECT * FROM disputes WHERE id = ?", (dispute_id,)).fetchone()
        logger.info("Dispute %s opened on booking %s; tier frozen for %s", dispute_id, booking_id, row["provider_id"])
        return self._row_to_dispute(created)

    def resolve_dispute(
        self, *, dispute_id: str, actor_user_id: str, resolution: str, note: str = "", acting_as_admin: bool = False
    ) -> Dispute:
        if not acting_as_admin:
            raise MarketplacePermissionError("Only admins can resolve disputes")
        if resolution not in {"provider_favored", "client_favored"}:
            raise MarketplaceValidationError("Invalid resolution. Allowed: provider_favored, client_favored")
        now = _utcnow().isoformat()
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM disputes WHERE id = ?", (dispute_id,)).fetchone()
                if not row:
                    raise MarketplaceNotFoundError("Dispute not found")
                if row["status"] != "open":
                    raise MarketplaceConflictError("Dispute is already resolved")
                conn.execute(
                    """
                    UPDATE disputes SET status = 'resolved', resolution = ?, resolved_by = ?, note = ?, resolved_at = ?
                    WHERE id = ?
                    """,
                    (resolution, actor_user_id, note, now, dispute_id),
                )
                conn.execute(
                    """
                    UPDATE users
                    SET open_disputes = MAX(open_disputes - 1, 0),
                        tier_frozen = CASE WHEN open_disputes - 1 > 0 THEN 1 ELSE 0 END,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (now, row["provider_id"]),
                )
                conn.commit()
                updated = conn.execute("SELECT * FROM disputes WHERE id = ?", (dispute_id,)).fetchone()
        return self._row_to_dispute(updated)

    def get_dispute(self, dispute_id: str) -> Dispute:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM disputes WHERE id = ?", (dispute_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Dispute not found")
        return self._row_to_dispute(row)

    # -- helpers -------------------------------------------------------------

    def _safe_json_object(self, raw_value: Any) -> Dict[str, Any]:
        if raw_value in (None, ""):
            return {}
        if isinstance(raw_value, dict):
            return raw_value
        try:
            parsed = json.loads(raw_value)
        except (TypeError, json.JSONDecodeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def _safe_json_list(self, raw_value: Any) -> List[Any]:
        if raw_value in (None, ""):
            return []
        if isinstance(raw_value, list):
            return raw_value
        try:
            parsed = json.loads(raw_value)
        except (TypeError, json.JSONDecodeError):
            return []
        return parsed if isinstance(parsed, list) else []


default_db = str(Path(__file__).resolve().parents[2] / "data" / "marketplace.sqlite3")
marketplace_store = MarketplaceStore(db_path=os.getenv("MARKETPLACE_DB_PATH", default_db))
