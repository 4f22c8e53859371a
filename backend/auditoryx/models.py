from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

OfferRole = Literal["artist", "producer", "engineer", "videographer", "studio"]
Currency = Literal["USD", "EUR", "GBP", "CAD"]
BookingStatus = Literal["pending", "accepted", "rejected", "paid", "confirmed", "completed", "cancelled"]
Tier = Literal["standard", "verified", "signature"]


class OfferAddon(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    description: str = ""
    required: bool = False


class OfferCreateRequest(BaseModel):
    user_id: str
    role: OfferRole
    title: str = Field(min_length=5, max_length=100)
    description: str = Field(min_length=20, max_length=2000)
    price: float = Field(ge=0)
    currency: Currency = "USD"
    turnaround_days: int = Field(ge=1)
    revisions: int = Field(ge=0)
    deliverables: List[str] = Field(min_length=1)
    addons: List[OfferAddon] = Field(default_factory=list)
    usage_policy: str = ""


class OfferUpdateRequest(BaseModel):
    user_id: str
    title: Optional[str] = Field(default=None, min_length=5, max_length=100)
    description: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[Currency] = None
    turnaround_days: Optional[int] = Field(default=None, ge=1)
    revisions: Optional[int] = Field(default=None, ge=0)
    deliverables: Optional[List[str]] = Field(default=None, min_length=1)
    addons: Optional[List[OfferAddon]] = None
    usage_policy: Optional[str] = None
    active: Optional[bool] = None


class Offer(BaseModel):
    id: str
    user_id: str
    role: OfferRole
    title: str
    description: str
    price: float
    currency: Currency
    turnaround_days: int
    revisions: int
    deliverables: List[str]
    addons: List[OfferAddon] = Field(default_factory=list)
    usage_policy: str = ""
    active: bool = False
    status: Literal["draft", "active", "inactive", "deleted"] = "draft"
    bookings: int = 0
    created_at: str
    updated_at: str


class OfferSnapshot(BaseModel):
    offer_id: str
    role: OfferRole
    title: str
    description: str
    price: float
    currency: Currency
    turnaround_days: int
    revisions: int
    deliverables: List[str]
    addons: List[OfferAddon] = Field(default_factory=list)
    usage_policy: str = ""
    captured_at: str


class Contract(BaseModel):
    terms: str
    agreed_by_client: bool = False
    agreed_by_provider: bool = False
    client_agreed_at: Optional[str] = None
    provider_agreed_at: Optional[str] = None


class BookingCreateRequest(BaseModel):
    client_id: str
    offer_id: str
    scheduled_at: str
    message: str = ""
    addon_names: List[str] = Field(default_factory=list)


class Booking(BaseModel):
    id: str
    client_id: str
    provider_id: str
    offer_id: str
    status: BookingStatus
    offer_snapshot: OfferSnapshot
    contract: Contract
    amount: float
    currency: Currency
    scheduled_at: str
    message: str = ""
    is_paid: bool = False
    credit_awarded: bool = False
    processed: bool = False
    credit_source: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    created_at: str
    updated_at: str
    accepted_at: Optional[str] = None
    paid_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None


class BookingActionRequest(BaseModel):
    actor_user_id: str
    note: str = ""


class BookingStatusHistoryEntry(BaseModel):
    id: str
    booking_id: str
    actor_user_id: str
    from_status: str
    to_status: str
    note: str = ""
    created_at: str


class CompletionResult(BaseModel):
    booking: Booking
    credit_awarded_now: bool
    xp_awarded: int = 0
    new_badges: List[str] = Field(default_factory=list)


class EscrowRecord(BaseModel):
    booking_id: str
    status: Literal["held", "released", "refunded"]
    amount: float
    currency: Currency
    payment_reference: str = ""
    refunded_amount: float = 0.0
    created_at: str
    updated_at: str


class CancelBookingRequest(BaseModel):
    actor_user_id: str
    reason: str = Field(min_length=1, max_length=500)
    confirm_refund: bool = False


class RefundQuoteView(BaseModel):
    booking_id: str
    can_cancel: bool
    refund_amount: float
    refund_percentage: int
    processing_fee: float
    platform_fee: float
    hours_until_booking: float
    policy: str
    reason: str


class CancellationResult(BaseModel):
    booking: Booking
    refund: RefundQuoteView


class ReviewCreateRequest(BaseModel):
    author_id: str
    rating: int = Field(ge=1, le=5)
    text: str


class Review(BaseModel):
    id: str
    booking_id: str
    author_id: str
    target_id: str
    rating: int
    text: str
    created_at: str


class DisputeCreateRequest(BaseModel):
    actor_user_id: str
    reason: str = Field(min_length=1, max_length=1000)


class DisputeResolveRequest(BaseModel):
    actor_user_id: str
    resolution: Literal["provider_favored", "client_favored"]
    note: str = ""


class Dispute(BaseModel):
    id: str
    booking_id: str
    raised_by: str
    provider_id: str
    reason: str
    status: Literal["open", "resolved"]
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    note: str = ""
    created_at: str
    resolved_at: Optional[str] = None


class UserProfileUpsertRequest(BaseModel):
    user_id: str
    display_name: str = Field(min_length=1, max_length=80)
    roles: List[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    id: str
    display_name: str
    roles: List[str] = Field(default_factory=list)
    tier: Tier = "standard"
    xp: int = 0
    average_rating: float = 0.0
    review_count: int = 0
    response_hrs: Optional[float] = None
    response_count: int = 0
    late_deliveries: int = 0
    open_disputes: int = 0
    tier_frozen: bool = False
    rank_score: float = 0.0
    completed_bookings: int = 0
    badges: List[str] = Field(default_factory=list)
    created_at: str
    updated_at: str


class RankJobResult(BaseModel):
    processed: int
    tier_changes: int
    batches: int
    errors: int


class PaymentWebhookAck(BaseModel):
    received: bool = True
    event_id: str
    status: Literal["processed", "duplicate", "ignored"]


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    is_admin: bool = False


class DeviceTokenRegisterRequest(BaseModel):
    user_id: str
    device_token: str
    platform: Literal["android", "ios", "web"] = "web"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["booking", "payment", "review", "dispute", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
