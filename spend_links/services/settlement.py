"""Outbound money movement.

The :class:`Disburser` protocol is what the lifecycle engine pays out
through. :class:`SimulatedDisburser` records every payout as a
``Disbursement`` row and is the only implementation shipped; a real
payments-provider integration replaces it without touching the engine.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional, Protocol
from uuid import UUID

from sqlmodel import Session

from ..models import DisbursementModel

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_SIMULATED = "simulated"


class Disburser(Protocol):
    def disburse(
        self,
        session: Session,
        *,
        wallet_id: UUID,
        amount: int,
        link_id: Optional[UUID] = None,
        account_number: Optional[str] = None,
        bank_name: Optional[str] = None,
    ) -> DisbursementModel:
        """Pay ``amount`` out of the platform. Raises UpstreamFailure on failure."""
        ...


def new_reference(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(8)}"


class SimulatedDisburser:
    def disburse(
        self,
        session: Session,
        *,
        wallet_id: UUID,
        amount: int,
        link_id: Optional[UUID] = None,
        account_number: Optional[str] = None,
        bank_name: Optional[str] = None,
    ) -> DisbursementModel:
        record = DisbursementModel(
            wallet_id=wallet_id,
            link_id=link_id,
            amount=amount,
            account_number=account_number,
            bank_name=bank_name,
            status=STATUS_SUCCESS,
            reference=new_reference("dsb"),
        )
        session.add(record)
        session.flush()
        logger.info(
            "settlement.disbursed",
            extra={
                "wallet_id": str(wallet_id),
                "link_id": str(link_id) if link_id else None,
                "amount": amount,
                "reference": record.reference,
            },
        )
        return record

    def simulate_transfer(
        self,
        session: Session,
        *,
        wallet_id: UUID,
        amount: int,
        account_number: str,
        bank_name: str,
        account_name: Optional[str] = None,
    ) -> DisbursementModel:
        """Record an advisor-initiated transfer without moving any balance."""
        record = DisbursementModel(
            wallet_id=wallet_id,
            amount=amount,
            account_number=account_number,
            bank_name=bank_name,
            account_name=account_name,
            status=STATUS_SIMULATED,
            reference=new_reference("sim"),
        )
        session.add(record)
        session.flush()
        logger.info(
            "settlement.simulated",
            extra={"wallet_id": str(wallet_id), "amount": amount, "reference": record.reference},
        )
        return record
