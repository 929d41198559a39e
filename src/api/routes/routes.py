from datetime import date
import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from src.api.deps import (
    CurrentUser,
    get_current_user,
    get_db,
    get_payment_gateway,
    require_admin,
    require_partner,
)
from src.api.schemas.schemas import (
    AvailabilityResponse,
    BookingRequest,
    BookingResponse,
    BookingStatusUpdateRequest,
    DisputeCreate,
    DisputeResponse,
    DisputeUpdate,
    GameCreate,
    GameReviewsResponse,
    InventoryResponse,
    OutboxEventResponse,
    PaymentResponse,
    PaymentWebhookRequest,
    RestockRequest,
    ReviewCreate,
    ReviewResponse,
)
from src.application.booking_service import BookingService
from src.application.dispute_service import DisputeService
from src.application.payment_service import PaymentService
from src.application.review_service import ReviewService
from src.domain.exceptions import (
    AuthorizationError,
    GameNotFoundError,
    GameRentalError,
    InvalidDateRangeError,
    NotFoundError,
)
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import (
    Booking,
    Dispute,
    DisputeStatus,
    Game,
    Payment,
    PaymentStatus,
    Review,
)
from src.infrastructure.payments.razorpay_gateway import PaymentGatewayError, RazorpayGateway
from src.infrastructure.repositories.game_repository import GameRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, AuthorizationError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, PaymentGatewayError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, 100)), max(0, offset)


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        user_id=booking.user_id,
        game_id=booking.game_id,
        partner_id=booking.partner_id,
        start_date=booking.start_date,
        end_date=booking.end_date,
        rental_days=booking.rental_days,
        daily_price=booking.daily_price,
        total_rental_price=booking.total_rental_price,
        security_deposit=booking.security_deposit,
        total_amount=booking.total_amount,
        status=booking.status,
        notes=booking.notes,
        handover_confirmed_at=booking.handover_confirmed_at,
        return_confirmed_at=booking.return_confirmed_at,
    )


def _payment_response(payment: Payment, key_id: str | None = None) -> PaymentResponse:
    return PaymentResponse(
        payment_id=payment.id,
        booking_id=payment.booking_id,
        provider=payment.provider.value,
        provider_payment_id=payment.provider_payment_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        payment_method=payment.payment_method,
        paid_at=payment.paid_at,
        failed_at=payment.failed_at,
        failure_reason=payment.failure_reason,
        key_id=key_id,
    )


def _dispute_response(dispute: Dispute) -> DisputeResponse:
    return DisputeResponse(
        dispute_id=dispute.id,
        booking_id=dispute.booking_id,
        reporter_id=dispute.reporter_id,
        type=dispute.type,
        title=dispute.title,
        description=dispute.description,
        status=dispute.status,
        resolution=dispute.resolution,
        resolved_by=dispute.resolved_by,
        resolved_at=dispute.resolved_at,
    )


def _review_response(review: Review) -> ReviewResponse:
    return ReviewResponse(
        review_id=review.id,
        booking_id=review.booking_id,
        user_id=review.user_id,
        game_id=review.game_id,
        rating=review.rating,
        comment=review.comment,
    )


def _inventory_stats(game: Game) -> dict:
    return {
        "game_id": game.id,
        "stock": game.stock,
        "available_stock": game.available_stock,
        "reserved_stock": game.stock - game.available_stock,
        "is_active": game.is_active,
    }


@router.get("/health")
def health():
    return {"message": "Game rental booking engine is running"}


# -----------------------------
# Catalog (public)
# -----------------------------
@router.get("/games/{game_id}/availability", response_model=AvailabilityResponse)
def get_game_availability(
    game_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
):
    game = GameRepository(db).get_by_id(game_id)
    if not game:
        raise _http_error(GameNotFoundError(game_id))

    result = AvailabilityResponse(**_inventory_stats(game))
    if start_date and end_date:
        if start_date > end_date:
            raise _http_error(
                InvalidDateRangeError(f"Start date {start_date} is after end date {end_date}")
            )
        result.start_date = start_date
        result.end_date = end_date
        result.has_date_conflict = BookingService(db).has_date_conflict(
            game_id, start_date, end_date
        )
    return result


@router.get("/games/{game_id}/reviews", response_model=GameReviewsResponse)
def list_game_reviews(
    game_id: int,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    service = ReviewService(db)
    average, count = service.game_rating(game_id)
    return GameReviewsResponse(
        game_id=game_id,
        average_rating=average,
        review_count=count,
        reviews=[_review_response(r) for r in service.list_game_reviews(game_id, limit, offset)],
    )


# -----------------------------
# Customer bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).create_booking(
            user_id=user.user_id,
            game_id=request.game_id,
            start_date=request.start_date,
            end_date=request.end_date,
            notes=request.notes,
        )
    except GameRentalError as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking)


@router.get("/bookings/my", response_model=list[BookingResponse])
def list_my_bookings(
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    bookings = BookingService(db).list_user_bookings(user.user_id, limit, offset)
    return [_booking_response(b) for b in bookings]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).get_booking(user.user_id, booking_id)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.patch("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).cancel_booking(user.user_id, booking_id)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


# -----------------------------
# Payments
# -----------------------------
@router.post(
    "/bookings/{booking_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_payment(
    booking_id: int,
    user: CurrentUser = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    try:
        payment = PaymentService(db, gateway).create_payment(user.user_id, booking_id)
    except (GameRentalError, PaymentGatewayError) as exc:
        raise _http_error(exc) from exc
    return _payment_response(payment, key_id=gateway.key_id)


@router.get("/bookings/{booking_id}/payments", response_model=PaymentResponse)
def get_booking_payment(
    booking_id: int,
    user: CurrentUser = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    try:
        payment = PaymentService(db, gateway).get_payment_for_booking(user.user_id, booking_id)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _payment_response(payment)


@router.post("/webhooks/payments")
async def payment_webhook(
    request: Request,
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    body = (await request.body()).decode("utf-8")
    signature = request.headers.get("X-Razorpay-Signature")
    if not await run_in_threadpool(gateway.verify_webhook, body, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        payload = PaymentWebhookRequest.model_validate_json(body)
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        ) from exc

    try:
        payment = await run_in_threadpool(
            PaymentService(db, gateway).process_webhook,
            payload.provider_payment_id,
            payload.status,
            payload.payment_method,
            payload.failure_reason,
        )
    except GameRentalError as exc:
        logger.warning(
            "Payment webhook for %s rejected: %s",
            payload.provider_payment_id,
            exc,
        )
        raise _http_error(exc) from exc

    return {"message": "Webhook processed successfully", "payment_status": payment.status.value}


# -----------------------------
# Reviews & disputes
# -----------------------------
@router.post(
    "/bookings/{booking_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_review(
    booking_id: int,
    request: ReviewCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        review = ReviewService(db).create_review(
            user_id=user.user_id,
            booking_id=booking_id,
            rating=request.rating,
            comment=request.comment,
        )
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _review_response(review)


@router.post(
    "/bookings/{booking_id}/disputes",
    response_model=DisputeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_dispute(
    booking_id: int,
    request: DisputeCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        dispute = DisputeService(db).create_dispute(
            reporter_id=user.user_id,
            booking_id=booking_id,
            dispute_type=request.type,
            title=request.title,
            description=request.description,
        )
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _dispute_response(dispute)


# -----------------------------
# Partner fulfilment
# -----------------------------
@router.get("/partner/bookings", response_model=list[BookingResponse])
def list_partner_bookings(
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(require_partner),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    bookings = BookingService(db).list_partner_bookings(user.user_id, limit, offset)
    return [_booking_response(b) for b in bookings]


@router.patch("/partner/bookings/{booking_id}/handover", response_model=BookingResponse)
def confirm_handover(
    booking_id: int,
    user: CurrentUser = Depends(require_partner),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).confirm_handover(user.user_id, booking_id)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.patch("/partner/bookings/{booking_id}/return", response_model=BookingResponse)
def confirm_return(
    booking_id: int,
    user: CurrentUser = Depends(require_partner),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).confirm_return(user.user_id, booking_id)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


# -----------------------------
# Admin
# -----------------------------
@router.post("/admin/games", response_model=InventoryResponse, status_code=status.HTTP_201_CREATED)
def create_game(
    request: GameCreate,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    game = GameRepository(db).create_game(
        partner_id=request.partner_id,
        name=request.name,
        platform=request.platform,
        stock=request.stock,
        rental_price_per_day=request.rental_price_per_day,
        security_deposit=request.security_deposit,
        is_active=request.is_active,
    )
    logger.info("Game %s created with stock %s", game.id, game.stock)
    return _inventory_stats(game)


@router.post("/admin/games/{game_id}/restock", response_model=InventoryResponse)
def restock_game(
    game_id: int,
    request: RestockRequest,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    repository = GameRepository(db)
    try:
        repository.release_stock(game_id, request.quantity)
    except GameRentalError as exc:
        raise _http_error(exc) from exc

    game = repository.get_by_id(game_id)
    logger.info(
        "Game %s restocked by %s (user %s); available %s/%s",
        game_id,
        request.quantity,
        user.user_id,
        game.available_stock,
        game.stock,
    )
    return _inventory_stats(game)


@router.get("/admin/bookings", response_model=list[BookingResponse])
def list_all_bookings(
    status_filter: BookingStatus | None = None,
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    try:
        bookings = BookingService(db).list_bookings(user.role, status_filter, limit, offset)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return [_booking_response(b) for b in bookings]


@router.patch("/admin/bookings/{booking_id}/status", response_model=BookingResponse)
def update_booking_status(
    booking_id: int,
    request: BookingStatusUpdateRequest,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).update_status(user.role, booking_id, request.status)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.get("/admin/payments", response_model=list[PaymentResponse])
def list_all_payments(
    status_filter: PaymentStatus | None = None,
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(require_admin),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    try:
        payments = PaymentService(db, gateway).list_payments(user.role, status_filter, limit, offset)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return [_payment_response(p) for p in payments]


@router.get("/admin/disputes", response_model=list[DisputeResponse])
def list_all_disputes(
    status_filter: DisputeStatus | None = None,
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    try:
        disputes = DisputeService(db).list_disputes(user.role, status_filter, limit, offset)
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return [_dispute_response(d) for d in disputes]


@router.patch("/admin/disputes/{dispute_id}", response_model=DisputeResponse)
def update_dispute(
    dispute_id: int,
    request: DisputeUpdate,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        dispute = DisputeService(db).update_dispute(
            role=user.role,
            dispute_id=dispute_id,
            status=request.status,
            resolver_id=user.user_id,
            resolution=request.resolution,
        )
    except GameRentalError as exc:
        raise _http_error(exc) from exc
    return _dispute_response(dispute)


# -----------------------------
# Notification outbox (relay)
# -----------------------------
OUTBOX_MAX_PAGE = int(os.getenv("OUTBOX_MAX_PAGE", "200"))


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, OUTBOX_MAX_PAGE))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [
        OutboxEventResponse(
            id=item.id,
            aggregate_type=item.aggregate_type,
            aggregate_id=item.aggregate_id,
            event_type=item.event_type,
            status=item.status,
            attempts=item.attempts,
            created_at=item.created_at.isoformat(),
        )
        for item in events
    ]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: int,
    user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    repository = OutboxRepository(db)
    item = repository.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )

    repository.mark_published(item)
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )
