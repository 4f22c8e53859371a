from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from auditoryx.auth import assert_actor_authorized, is_admin, require_admin, resolve_request_user
from auditoryx.models import (
    Booking,
    BookingActionRequest,
    BookingCreateRequest,
    BookingStatusHistoryEntry,
    CancelBookingRequest,
    CancellationResult,
    CompletionResult,
    Dispute,
    DisputeCreateRequest,
    DisputeResolveRequest,
    EscrowRecord,
    RefundQuoteView,
    Review,
    ReviewCreateRequest,
)
from auditoryx.routers.http_errors import raise_http_error
from auditoryx.services.errors import MarketplaceError
from auditoryx.services.marketplace_store import marketplace_store
from auditoryx.services.notification_store import notify_safely
from auditoryx.services.refund_policy import RefundQuote

router = APIRouter(tags=["bookings"])


def _quote_view(booking_id: str, quote: RefundQuote) -> RefundQuoteView:
    return RefundQuoteView(
        booking_id=booking_id,
        can_cancel=quote.can_cancel,
        refund_amount=quote.refund_amount,
        refund_percentage=quote.refund_percentage,
        processing_fee=quote.processing_fee,
        platform_fee=quote.platform_fee,
        hours_until_booking=quote.hours_until_booking,
        policy=quote.policy,
        reason=quote.reason,
    )


def _notify_parties(booking: Booking, title: str, body: str, category: str = "booking") -> None:
    for user_id in (booking.client_id, booking.provider_id):
        notify_safely(
            user_id=user_id,
            title=title,
            body=body,
            category=category,
            deep_link=f"booking:{booking.id}",
            data={"booking_id": booking.id, "status": booking.status},
        )


@router.post("/bookings", response_model=Booking)
def create_booking(
    request: BookingCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.client_id, authorization=authorization)
    try:
        booking = marketplace_store.create_booking(request)
    except MarketplaceError as exc:
        raise_http_error(exc)
    notify_safely(
        user_id=booking.provider_id,
        title="New booking request",
        body=f"{booking.offer_snapshot.title} on {booking.scheduled_at}",
        category="booking",
        deep_link=f"booking:{booking.id}",
        data={"booking_id": booking.id, "status": booking.status},
    )
    return booking


@router.get("/bookings", response_model=list[Booking])
def list_bookings(
    user_id: Optional[str] = Query(default=None),
    role: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
):
    try:
        return marketplace_store.list_bookings(user_id=user_id, role=role, status=status)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/bookings/{booking_id}", response_model=Booking)
def get_booking(booking_id: str):
    try:
        return marketplace_store.get_booking(booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/bookings/{booking_id}/history", response_model=list[BookingStatusHistoryEntry])
def get_booking_history(booking_id: str):
    try:
        return marketplace_store.list_booking_history(booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


def _respond(booking_id: str, request: BookingActionRequest, decision: str, authorization: Optional[str]) -> Booking:
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        booking = marketplace_store.respond_to_booking(
            booking_id=booking_id,
            actor_user_id=request.actor_user_id,
            decision=decision,
            note=request.note,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    notify_safely(
        user_id=booking.client_id,
        title=f"Booking {decision}",
        body=f"{booking.offer_snapshot.title} was {decision} by the provider",
        category="booking",
        deep_link=f"booking:{booking.id}",
        data={"booking_id": booking.id, "status": booking.status},
    )
    return booking


@router.post("/bookings/{booking_id}/accept", response_model=Booking)
def accept_booking(
    booking_id: str,
    request: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    return _respond(booking_id, request, "accepted", authorization)


@router.post("/bookings/{booking_id}/reject", response_model=Booking)
def reject_booking(
    booking_id: str,
    request: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    return _respond(booking_id, request, "rejected", authorization)


@router.post("/bookings/{booking_id}/confirm", response_model=Booking)
def confirm_booking(
    booking_id: str,
    request: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        booking = marketplace_store.confirm_booking(
            booking_id=booking_id,
            actor_user_id=request.actor_user_id,
            note=request.note,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    _notify_parties(booking, "Booking confirmed", f"{booking.offer_snapshot.title} is confirmed")
    return booking


@router.post("/bookings/{booking_id}/contract/agree", response_model=Booking)
def agree_contract(
    booking_id: str,
    request: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.agree_contract(booking_id=booking_id, actor_user_id=request.actor_user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/bookings/{booking_id}/complete", response_model=CompletionResult)
def complete_booking(
    booking_id: str,
    request: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        result = marketplace_store.complete_booking(
            booking_id=booking_id,
            actor_user_id=request.actor_user_id,
            note=request.note,
            acting_as_admin=is_admin(resolve_request_user(authorization)),
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    if result.credit_awarded_now:
        booking = result.booking
        notify_safely(
            user_id=booking.provider_id,
            title="Funds released",
            body=f"{booking.amount:.2f} {booking.currency} released for {booking.offer_snapshot.title}",
            category="payment",
            deep_link=f"booking:{booking.id}",
            data={"booking_id": booking.id, "xp_awarded": str(result.xp_awarded)},
        )
    return result


@router.get("/bookings/{booking_id}/escrow", response_model=EscrowRecord)
def get_escrow(booking_id: str):
    try:
        return marketplace_store.get_escrow(booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/bookings/{booking_id}/cancel", response_model=RefundQuoteView)
def quote_cancellation(
    booking_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        _, quote = marketplace_store.quote_cancellation(booking_id=booking_id, actor_user_id=actor_user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
    return _quote_view(booking_id, quote)


@router.post("/bookings/{booking_id}/cancel", response_model=CancellationResult)
def cancel_booking(
    booking_id: str,
    request: CancelBookingRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        if not request.confirm_refund:
            booking, quote = marketplace_store.quote_cancellation(
                booking_id=booking_id, actor_user_id=request.actor_user_id
            )
            return CancellationResult(booking=booking, refund=_quote_view(booking_id, quote))
        booking, quote = marketplace_store.cancel_booking(
            booking_id=booking_id, actor_user_id=request.actor_user_id, reason=request.reason
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    _notify_parties(
        booking,
        "Booking cancelled",
        f"{booking.offer_snapshot.title} was cancelled. Refund: {quote.refund_amount:.2f} {booking.currency}",
    )
    return CancellationResult(booking=booking, refund=_quote_view(booking_id, quote))


@router.get("/reviews", response_model=list[Review])
def list_reviews(
    target_id: Optional[str] = Query(default=None),
    author_id: Optional[str] = Query(default=None),
    booking_id: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
):
    return marketplace_store.list_reviews(target_id=target_id, author_id=author_id, booking_id=booking_id, limit=limit)


@router.post("/bookings/{booking_id}/reviews", response_model=Review)
def create_review(
    booking_id: str,
    request: ReviewCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.author_id, authorization=authorization)
    try:
        review = marketplace_store.create_review(
            booking_id=booking_id, author_id=request.author_id, rating=request.rating, text=request.text
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    notify_safely(
        user_id=review.target_id,
        title="New review",
        body=f"You received a {review.rating}-star review",
        category="review",
        deep_link=f"booking:{booking_id}",
        data={"booking_id": booking_id, "review_id": review.id},
    )
    return review


@router.post("/bookings/{booking_id}/disputes", response_model=Dispute)
def raise_dispute(
    booking_id: str,
    request: DisputeCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        dispute = marketplace_store.raise_dispute(
            booking_id=booking_id, actor_user_id=request.actor_user_id, reason=request.reason
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    notify_safely(
        user_id=dispute.provider_id,
        title="Dispute opened",
        body="A dispute was opened on one of your bookings; your tier is frozen until it is resolved",
        category="dispute",
        deep_link=f"booking:{booking_id}",
        data={"booking_id": booking_id, "dispute_id": dispute.id},
    )
    return dispute


@router.post("/disputes/{dispute_id}/resolve", response_model=Dispute)
def resolve_dispute(
    dispute_id: str,
    request: DisputeResolveRequest,
    authorization: Optional[str] = Header(default=None),
    admin_user_id: str = Depends(require_admin),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        dispute = marketplace_store.resolve_dispute(
            dispute_id=dispute_id,
            actor_user_id=admin_user_id,
            resolution=request.resolution,
            note=request.note,
            acting_as_admin=True,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
    notify_safely(
        user_id=dispute.provider_id,
        title="Dispute resolved",
        body=f"Resolution: {dispute.resolution}",
        category="dispute",
        deep_link=f"booking:{dispute.booking_id}",
        data={"booking_id": dispute.booking_id, "dispute_id": dispute.id},
    )
    return dispute
