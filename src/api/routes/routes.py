from datetime import date
from typing import Literal
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from src.api.dependencies import (
    Actor,
    get_actor,
    get_db,
    get_sms_sender,
    require_admin,
    require_vendor,
)
from src.api.schemas.schemas import (
    AvailabilityResponse,
    BookingRequest,
    BookingResponse,
    BookingStatusUpdate,
    CardCreate,
    CardResponse,
    ConversionRequest,
    DiscountUpdate,
    DispatchResponse,
    EstimationRemovedResponse,
    EstimationRequest,
    EstimationResponse,
    OutboxEventResponse,
    ReviewRequest,
    ReviewResponse,
    ServiceCreate,
    ServiceResponse,
    SlotCreate,
    SlotResponse,
    SweepResponse,
)
from src.application.booking_service import BookingService
from src.application.catalog_service import CatalogService, PackageSpec
from src.application.conversion_service import ConversionOrchestrator
from src.application.estimation_service import (
    CardSelection,
    EstimationAggregator,
    ServiceSelection,
)
from src.application.notifications import NotificationDispatcher, SmsSender
from src.application.review_service import ReviewService
from src.domain.catalog import PublicationStatus
from src.domain.exceptions import (
    ConflictError,
    InvalidRequestError,
    MarketplaceError,
    NotFoundError,
    PermissionDeniedError,
    TransactionFailureError,
)
from src.domain.state_machine import BookingStatus
from src.infrastructure.repositories.catalog_repository import CatalogRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_MODERATION_ACTIONS = {
    "approve": PublicationStatus.PUBLISHED,
    "reject": PublicationStatus.REJECTED,
    "revert": PublicationStatus.PENDING,
}


def _to_http_error(exc: MarketplaceError) -> HTTPException:
    if isinstance(exc, InvalidRequestError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, TransactionFailureError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        logger.error("Unmapped domain error: %s", exc)
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


def _page(limit: int, offset: int) -> tuple[int, int]:
    return max(1, min(limit, 100)), max(0, offset)


@router.get("/health")
def health():
    return {"message": "Wedding Marketplace Booking Engine is running"}


# -----------------------------
# Catalog
# -----------------------------
@router.post("/vendor/services", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    request: ServiceCreate,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
):
    try:
        service = CatalogService(db).create_service(
            vendor_id=actor.id,
            name=request.name,
            category=request.category,
            city=request.city,
            description=request.description,
            booking_type=request.booking_type,
            available_quantity=request.available_quantity,
            packages=[
                PackageSpec(name=item.name, price=item.price, inclusions=item.inclusions)
                for item in request.packages
            ],
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return ServiceResponse.model_validate(service)


@router.post(
    "/vendor/services/{service_id}/slots",
    response_model=list[SlotResponse],
    status_code=status.HTTP_201_CREATED,
)
def add_service_slots(
    service_id: str,
    request: SlotCreate,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
):
    try:
        slots = CatalogService(db).add_slots(service_id, actor.id, request.dates)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return [SlotResponse.model_validate(slot) for slot in slots]


@router.post("/vendor/cards", response_model=CardResponse, status_code=status.HTTP_201_CREATED)
def create_card(
    request: CardCreate,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
):
    try:
        card = CatalogService(db).create_card(
            vendor_id=actor.id,
            name=request.name,
            card_type=request.card_type,
            city=request.city,
            price_per_card=request.price_per_card,
            available_quantity=request.available_quantity,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return CardResponse.model_validate(card)


@router.patch("/vendor/services/{service_id}/discount", response_model=ServiceResponse)
def update_service_discount(
    service_id: str,
    request: DiscountUpdate,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
):
    try:
        service = CatalogService(db).set_service_discount(
            service_id,
            actor.id,
            request.discount_percent,
            request.discount_expiry,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return ServiceResponse.model_validate(service)


@router.patch("/vendor/cards/{card_id}/discount", response_model=CardResponse)
def update_card_discount(
    card_id: str,
    request: DiscountUpdate,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
):
    try:
        card = CatalogService(db).set_card_discount(
            card_id,
            actor.id,
            request.discount_percent,
            request.discount_expiry,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return CardResponse.model_validate(card)


@router.post("/admin/services/{service_id}/{action}", response_model=ServiceResponse)
def moderate_service(
    service_id: str,
    action: Literal["approve", "reject", "revert"],
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        service = CatalogService(db).set_service_status(service_id, _MODERATION_ACTIONS[action])
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return ServiceResponse.model_validate(service)


@router.post("/admin/cards/{card_id}/{action}", response_model=CardResponse)
def moderate_card(
    card_id: str,
    action: Literal["approve", "reject", "revert"],
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        card = CatalogService(db).set_card_status(card_id, _MODERATION_ACTIONS[action])
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return CardResponse.model_validate(card)


@router.get("/services/{service_id}", response_model=ServiceResponse)
def get_service(service_id: str, db: Session = Depends(get_db)):
    service = CatalogRepository(db).get_service(service_id)
    if not service:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Service not found",
        )
    return ServiceResponse.model_validate(service)


@router.get("/services/{service_id}/slots", response_model=list[SlotResponse])
def list_service_slots(service_id: str, db: Session = Depends(get_db)):
    try:
        slots = CatalogService(db).list_slots(service_id)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return [SlotResponse.model_validate(slot) for slot in slots]


@router.get("/cards/{card_id}", response_model=CardResponse)
def get_card(card_id: str, db: Session = Depends(get_db)):
    card = CatalogRepository(db).get_card(card_id)
    if not card:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Card template not found",
        )
    return CardResponse.model_validate(card)


@router.get("/services/{service_id}/availability", response_model=AvailabilityResponse)
def check_service_availability(
    service_id: str,
    day: date = Query(alias="date"),
    db: Session = Depends(get_db),
):
    try:
        available = CatalogService(db).service_availability(service_id, day)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return AvailabilityResponse(available=available)


@router.get("/cards/{card_id}/availability", response_model=AvailabilityResponse)
def check_card_availability(
    card_id: str,
    quantity: int = 1,
    db: Session = Depends(get_db),
):
    try:
        available = CatalogService(db).card_availability(card_id, quantity)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return AvailabilityResponse(available=available)


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    sender: SmsSender = Depends(get_sms_sender),
):
    service = BookingService(db, sender)

    try:
        booking = service.create_booking(
            user_id=actor.id,
            scheduled_at=request.scheduled_at,
            service_id=request.service_id,
            package_id=request.package_id,
            card_template_id=request.card_template_id,
            quantity=request.quantity,
            end_date=request.end_date,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return BookingResponse.model_validate(booking)


@router.get("/bookings", response_model=list[BookingResponse])
def list_my_bookings(
    limit: int = 20,
    offset: int = 0,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    bookings = BookingService(db).list_for_user(actor.id, limit, offset)
    return [BookingResponse.model_validate(item) for item in bookings]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    try:
        booking = BookingService(db).get_for_actor(booking_id, actor.id, actor.role)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    sender: SmsSender = Depends(get_sms_sender),
):
    try:
        booking = BookingService(db, sender).cancel_by_user(booking_id, actor.id)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return BookingResponse.model_validate(booking)


@router.get("/vendor/bookings", response_model=list[BookingResponse])
def list_vendor_bookings(
    status_filter: BookingStatus | None = None,
    limit: int = 20,
    offset: int = 0,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    bookings = BookingService(db).list_for_vendor(actor.id, status_filter, limit, offset)
    return [BookingResponse.model_validate(item) for item in bookings]


@router.patch("/vendor/bookings/{booking_id}/status", response_model=BookingResponse)
def update_booking_status(
    booking_id: str,
    request: BookingStatusUpdate,
    actor: Actor = Depends(require_vendor),
    db: Session = Depends(get_db),
    sender: SmsSender = Depends(get_sms_sender),
):
    try:
        booking = BookingService(db, sender).update_status_by_vendor(
            booking_id,
            actor.id,
            request.status,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return BookingResponse.model_validate(booking)


@router.post("/admin/bookings/{booking_id}/cancel", response_model=BookingResponse)
def admin_cancel_booking(
    booking_id: str,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    sender: SmsSender = Depends(get_sms_sender),
):
    try:
        booking = BookingService(db, sender).cancel_by_admin(booking_id)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return BookingResponse.model_validate(booking)


@router.post("/admin/bookings/complete-past", response_model=SweepResponse)
def complete_past_bookings(
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        completed = BookingService(db).complete_past_events()
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return SweepResponse(completed=completed)


# -----------------------------
# Estimations
# -----------------------------
@router.post("/estimations", response_model=EstimationResponse | EstimationRemovedResponse)
def add_to_estimation(
    request: EstimationRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    try:
        estimation = EstimationAggregator(db).add_or_update(
            actor.id,
            services=[
                ServiceSelection(item.service_id, item.package_id, item.quantity)
                for item in request.services
            ],
            cards=[CardSelection(item.card_id, item.quantity) for item in request.cards],
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    if estimation is None:
        return EstimationRemovedResponse(deleted=True)
    return EstimationResponse.model_validate(estimation)


@router.get("/estimations", response_model=list[EstimationResponse])
def list_estimations(
    limit: int = 20,
    offset: int = 0,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    limit, offset = _page(limit, offset)
    estimations = EstimationAggregator(db).list_for_user(actor.id, limit, offset)
    return [EstimationResponse.model_validate(item) for item in estimations]


@router.get("/estimations/active", response_model=EstimationResponse)
def get_active_estimation(
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    estimation = EstimationAggregator(db).get_active(actor.id)
    if estimation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active estimation")
    return EstimationResponse.model_validate(estimation)


def _remove_from_estimation(
    db: Session,
    estimation_id: str,
    actor: Actor,
    service_id: str | None = None,
    card_id: str | None = None,
):
    try:
        estimation = EstimationAggregator(db).remove_item(
            estimation_id,
            actor.id,
            service_id=service_id,
            card_id=card_id,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    if estimation is None:
        return EstimationRemovedResponse(deleted=True)
    return EstimationResponse.model_validate(estimation)


@router.delete("/estimations/{estimation_id}", response_model=EstimationRemovedResponse)
def delete_estimation(
    estimation_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _remove_from_estimation(db, estimation_id, actor)


@router.delete(
    "/estimations/{estimation_id}/services/{service_id}",
    response_model=EstimationResponse | EstimationRemovedResponse,
)
def remove_estimation_service(
    estimation_id: str,
    service_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _remove_from_estimation(db, estimation_id, actor, service_id=service_id)


@router.delete(
    "/estimations/{estimation_id}/cards/{card_id}",
    response_model=EstimationResponse | EstimationRemovedResponse,
)
def remove_estimation_card(
    estimation_id: str,
    card_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return _remove_from_estimation(db, estimation_id, actor, card_id=card_id)


@router.post(
    "/estimations/{estimation_id}/convert",
    response_model=list[BookingResponse],
    status_code=status.HTTP_201_CREATED,
)
def convert_estimation(
    estimation_id: str,
    request: ConversionRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    sender: SmsSender = Depends(get_sms_sender),
):
    try:
        bookings = ConversionOrchestrator(db, sender).convert(
            estimation_id,
            actor.id,
            request.scheduled_at,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc

    return [BookingResponse.model_validate(item) for item in bookings]


# -----------------------------
# Reviews
# -----------------------------
@router.post("/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def submit_review(
    request: ReviewRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    try:
        review = ReviewService(db).submit_review(
            actor.id,
            request.booking_id,
            request.stars,
            request.comment,
        )
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return ReviewResponse.model_validate(review)


@router.delete("/admin/reviews/{review_id}", response_model=ReviewResponse)
def deactivate_review(
    review_id: str,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        review = ReviewService(db).deactivate_review(review_id)
    except MarketplaceError as exc:
        raise _to_http_error(exc) from exc
    return ReviewResponse.model_validate(review)


# -----------------------------
# Outbox
# -----------------------------
@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status([status_filter], safe_limit)
    return [
        OutboxEventResponse(
            id=item.id,
            aggregate_type=item.aggregate_type,
            aggregate_id=item.aggregate_id,
            event_type=item.event_type,
            status=item.status,
            attempts=item.attempts,
            last_error=item.last_error,
            created_at=item.created_at.isoformat(),
        )
        for item in events
    ]


@router.post("/outbox/events/dispatch", response_model=DispatchResponse)
def dispatch_outbox_events(
    limit: int = 50,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    sender: SmsSender = Depends(get_sms_sender),
):
    safe_limit = max(1, min(limit, 200))
    delivered = NotificationDispatcher(db, sender).dispatch_pending(safe_limit)
    return DispatchResponse(delivered=delivered)
