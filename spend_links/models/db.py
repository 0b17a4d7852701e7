from __future__ import annotations
from datetime import datetime, UTC
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


class LinkStatus(str, Enum):
    ACTIVE = "active"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLAIMED = "claimed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Statuses whose escrow has not been resolved yet.
ESCROWED_STATUSES = frozenset({LinkStatus.ACTIVE, LinkStatus.PENDING_APPROVAL})


class Wallet(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    owner_name: str
    currency: str = Field(default="NGN")
    balance: int = Field(default=0, ge=0)
    pin_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SecureLink(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    code: str = Field(index=True, unique=True, max_length=8)
    owner_wallet_id: UUID = Field(foreign_key="wallet.id", index=True)
    passcode_hash: str
    amount: int = Field(gt=0)
    description: Optional[str] = None
    status: LinkStatus = Field(default=LinkStatus.ACTIVE, index=True)

    requested_amount: Optional[int] = None
    target_account_number: Optional[str] = None
    target_bank_name: Optional[str] = None
    claimed_by_wallet_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow, index=True)
    expires_at: datetime
    updated_at: datetime = Field(default_factory=utcnow)
    claimed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class LedgerEntry(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    ts: datetime = Field(default_factory=utcnow, index=True)
    account_id: UUID = Field(foreign_key="wallet.id", index=True)
    amount: int
    type: str
    category: str = Field(default="general")
    ref: Optional[str] = None
    link_id: Optional[UUID] = Field(default=None, index=True)


class Disbursement(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    wallet_id: UUID = Field(foreign_key="wallet.id", index=True)
    link_id: Optional[UUID] = Field(default=None, index=True)
    amount: int = Field(gt=0)
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    status: str
    reference: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow)


class IdempotencyRecord(SQLModel, table=True):
    route: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    request_signature: str
    response_payload: str
