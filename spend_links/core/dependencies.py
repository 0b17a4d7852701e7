from functools import lru_cache
from uuid import UUID

from fastapi import Depends, Header
from sqlmodel import Session

from ..services import (
    AdvisorActionBridge,
    LinkEventBroker,
    LinkLifecycleEngine,
    SimulatedDisburser,
    WalletService,
)
from .config import get_settings
from .db import get_session

@lru_cache(maxsize=1)
def get_broker() -> LinkEventBroker:
    settings = get_settings()
    return LinkEventBroker(
        queue_size=settings.event_queue_size,
        delivery_attempts=settings.event_delivery_attempts,
        retry_delay=settings.event_retry_delay_seconds,
    )

@lru_cache(maxsize=1)
def get_disburser() -> SimulatedDisburser:
    return SimulatedDisburser()

def get_current_wallet_id(
    wallet_id: UUID = Header(..., convert_underscores=False, alias="X-Wallet-Id"),
) -> UUID:
    # Set by the upstream identity provider once the session is verified.
    return wallet_id

def get_wallet_service(session: Session = Depends(get_session)) -> WalletService:
    return WalletService(session)

def get_link_engine(
    session: Session = Depends(get_session),
    broker: LinkEventBroker = Depends(get_broker),
    disburser: SimulatedDisburser = Depends(get_disburser),
) -> LinkLifecycleEngine:
    return LinkLifecycleEngine(session, disburser=disburser, broker=broker)

def get_advisor_bridge(
    session: Session = Depends(get_session),
    engine: LinkLifecycleEngine = Depends(get_link_engine),
    disburser: SimulatedDisburser = Depends(get_disburser),
) -> AdvisorActionBridge:
    return AdvisorActionBridge(session, engine, settlement=disburser)
