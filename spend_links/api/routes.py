from typing import Iterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import StreamingResponse

from ..core.config import get_settings
from ..core.dependencies import (
    get_advisor_bridge,
    get_broker,
    get_current_wallet_id,
    get_link_engine,
    get_wallet_service,
)
from ..core.errors import SubscriptionClosedError
from ..models import (
    AdvisorActionRequest,
    AdvisorActionResponse,
    ApproveRequest,
    ClaimRequest,
    ClaimResponse,
    DisbursementRequest,
    LinkCreate,
    LinkCreated,
    LinkStatus,
    LinkStatusResponse,
    MoneyMovementRequest,
    OwnerLinkView,
    PasscodeBody,
    PinUpdate,
    PublicLinkView,
    StatementResponse,
    SweepResponse,
    WalletCreate,
    WalletResponse,
)
from ..services import (
    AdvisorActionBridge,
    LinkEventBroker,
    LinkLifecycleEngine,
    Subscription,
    WalletService,
    link_topic,
    owner_topic,
    propose_action,
)


def _event_stream(subscription: Subscription, keepalive: float) -> Iterator[str]:
    try:
        yield ": connected\n\n"
        while True:
            try:
                event = subscription.get(timeout=keepalive)
            except SubscriptionClosedError as exc:
                # Client falls back to polling the link.
                yield f"event: closed\ndata: {{\"detail\": \"{exc}\"}}\n\n"
                return
            if event is None:
                if subscription.closed:
                    return
                yield ": keepalive\n\n"
                continue
            yield f"event: link_change\ndata: {event.model_dump_json()}\n\n"
    finally:
        subscription.broker.unsubscribe(subscription)


def _stream_response(broker: LinkEventBroker, topic: str) -> StreamingResponse:
    subscription = broker.subscribe(topic)
    return StreamingResponse(
        _event_stream(subscription, get_settings().event_keepalive_seconds),
        media_type="text/event-stream",
    )


wallet_router = APIRouter(prefix="/wallets", tags=["wallets"])

@wallet_router.post("", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
def create_wallet(
    payload: WalletCreate,
    service: WalletService = Depends(get_wallet_service),
) -> WalletResponse:
    return service.create_wallet(payload)

@wallet_router.get("/me", response_model=WalletResponse)
def get_wallet(
    wallet_id: UUID = Depends(get_current_wallet_id),
    service: WalletService = Depends(get_wallet_service),
) -> WalletResponse:
    return service.get_wallet(wallet_id)

@wallet_router.post("/me/deposit", response_model=WalletResponse)
def deposit(
    payload: MoneyMovementRequest,
    wallet_id: UUID = Depends(get_current_wallet_id),
    service: WalletService = Depends(get_wallet_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> WalletResponse:
    return service.deposit(wallet_id, payload, idempotency_key)

@wallet_router.put("/me/pin", response_model=WalletResponse)
def set_pin(
    payload: PinUpdate,
    wallet_id: UUID = Depends(get_current_wallet_id),
    service: WalletService = Depends(get_wallet_service),
) -> WalletResponse:
    return service.set_pin(wallet_id, payload.pin, payload.current_pin)

@wallet_router.get("/me/statement", response_model=StatementResponse)
def get_statement(
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = None,
    wallet_id: UUID = Depends(get_current_wallet_id),
    service: WalletService = Depends(get_wallet_service),
) -> StatementResponse:
    return service.get_statement(wallet_id, limit=limit, cursor=cursor)

@wallet_router.get("/me/events")
def wallet_events(
    wallet_id: UUID = Depends(get_current_wallet_id),
    broker: LinkEventBroker = Depends(get_broker),
) -> StreamingResponse:
    return _stream_response(broker, owner_topic(wallet_id))


link_router = APIRouter(prefix="/links", tags=["links"])

@link_router.post("", response_model=LinkCreated, status_code=status.HTTP_201_CREATED)
def create_link(
    payload: LinkCreate,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> LinkCreated:
    return engine.create_link(
        owner_id,
        payload.amount,
        payload.passcode,
        description=payload.description,
        idempotency_key=idempotency_key,
    )

@link_router.get("", response_model=list[OwnerLinkView])
def list_links(
    status: Optional[LinkStatus] = None,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> list[OwnerLinkView]:
    return engine.list_links(owner_id, status)

@link_router.get("/pending", response_model=list[OwnerLinkView])
def list_pending_approvals(
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> list[OwnerLinkView]:
    return engine.list_pending_approvals(owner_id)

@link_router.post("/sweep", response_model=SweepResponse)
def sweep_expired(
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> SweepResponse:
    return SweepResponse(expired=engine.expire_due())

@link_router.get("/{link_id}", response_model=OwnerLinkView)
def get_link(
    link_id: UUID,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> OwnerLinkView:
    return engine.get_link(link_id, owner_id)

@link_router.post("/{link_id}/approve", response_model=LinkStatusResponse)
def approve(
    link_id: UUID,
    payload: ApproveRequest,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> LinkStatusResponse:
    return engine.approve(link_id, owner_id, payload.pin, idempotency_key=idempotency_key)

@link_router.post("/{link_id}/reject", response_model=LinkStatusResponse)
def reject(
    link_id: UUID,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> LinkStatusResponse:
    return engine.reject(link_id, owner_id)

@link_router.post("/{link_id}/cancel", response_model=LinkStatusResponse)
def cancel(
    link_id: UUID,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> LinkStatusResponse:
    return engine.cancel(link_id, owner_id)

@link_router.get("/{link_id}/events")
def link_events(
    link_id: UUID,
    owner_id: UUID = Depends(get_current_wallet_id),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
    broker: LinkEventBroker = Depends(get_broker),
) -> StreamingResponse:
    engine.get_link(link_id, owner_id)
    return _stream_response(broker, link_topic(link_id))


public_router = APIRouter(prefix="/public/links", tags=["public"])

@public_router.get("/{code}", response_model=PublicLinkView)
def get_public_link(
    code: str,
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> PublicLinkView:
    return engine.get_link_by_code(code)

@public_router.post("/{code}/claim", response_model=ClaimResponse)
def claim(
    code: str,
    payload: ClaimRequest,
    engine: LinkLifecycleEngine = Depends(get_link_engine),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> ClaimResponse:
    return engine.claim(
        code,
        payload.passcode,
        claimant_wallet_id=payload.claimant_wallet_id,
        idempotency_key=idempotency_key,
    )

@public_router.post("/{code}/request", response_model=LinkStatusResponse)
def submit_request(
    code: str,
    payload: DisbursementRequest,
    engine: LinkLifecycleEngine = Depends(get_link_engine),
) -> LinkStatusResponse:
    return engine.submit_request(
        code,
        payload.passcode,
        payload.requested_amount,
        payload.target_account_number,
        payload.target_bank_name,
    )

@public_router.post("/{code}/events")
def claimant_events(
    code: str,
    payload: PasscodeBody,
    engine: LinkLifecycleEngine = Depends(get_link_engine),
    broker: LinkEventBroker = Depends(get_broker),
) -> StreamingResponse:
    link_id = engine.claimant_link_id(code, payload.passcode)
    return _stream_response(broker, link_topic(link_id))


advisor_router = APIRouter(prefix="/advisor", tags=["advisor"])

@advisor_router.post("/actions", response_model=AdvisorActionResponse)
def advisor_action(
    payload: AdvisorActionRequest,
    owner_id: UUID = Depends(get_current_wallet_id),
    bridge: AdvisorActionBridge = Depends(get_advisor_bridge),
) -> AdvisorActionResponse:
    action = propose_action(payload.output)
    if action is None:
        return AdvisorActionResponse()
    result = None
    if payload.execute:
        result = bridge.execute_action(action, owner_id, passcode=payload.passcode)
    return AdvisorActionResponse(action=action.model_dump(mode="json"), result=result)

__all__ = ["wallet_router", "link_router", "public_router", "advisor_router"]
