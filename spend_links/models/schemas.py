from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .db import LinkStatus

# Wallets ----------------------------------------------------------------

class WalletCreate(BaseModel):
    owner_name: str = Field(..., min_length=1, description="Name of the wallet holder")
    pin: Optional[str] = Field(default=None, description="Optional 4-digit transaction PIN")

class WalletResponse(BaseModel):
    id: UUID
    owner_name: str
    currency: str
    created_at: datetime
    balance: int = Field(..., ge=0, description="Balance in kobo")
    escrowed: int = Field(default=0, ge=0, description="Kobo held by unresolved secure links")
    has_pin: bool

class PinUpdate(BaseModel):
    pin: str
    current_pin: Optional[str] = Field(
        default=None, description="Required when a PIN is already set"
    )

class MoneyMovementRequest(BaseModel):
    amount: int = Field(..., ge=1, description="Amount in kobo (must be >= 1)")
    memo: Optional[str] = Field(default=None, description="Narrative to display on the statement")

class LedgerEntryResponse(BaseModel):
    id: UUID
    ts: datetime
    account_id: UUID
    amount: int
    type: Literal["DEBIT", "CREDIT"]
    category: str
    ref: Optional[str] = Field(default=None, description="Human-readable memo or reference")
    link_id: Optional[UUID] = None

class StatementResponse(BaseModel):
    items: list[LedgerEntryResponse]
    next_cursor: Optional[str] = None

# Secure links -----------------------------------------------------------

class LinkCreate(BaseModel):
    amount: int = Field(..., description="Escrowed amount in kobo")
    passcode: str = Field(..., description="4-digit passcode shared with the claimant")
    description: Optional[str] = Field(default=None, max_length=280)

class LinkCreated(BaseModel):
    link_id: UUID
    code: str
    status: LinkStatus
    amount: int
    expires_at: datetime

class PublicLinkView(BaseModel):
    """What an unauthenticated caller may see. No owner, hash or bank details."""

    code: str
    amount: int
    status: LinkStatus
    description: Optional[str] = None

class OwnerLinkView(BaseModel):
    id: UUID
    code: str
    amount: int
    description: Optional[str] = None
    status: LinkStatus
    requested_amount: Optional[int] = None
    target_account_number: Optional[str] = None
    target_bank_name: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    updated_at: datetime
    claimed_at: Optional[datetime] = None

class PasscodeBody(BaseModel):
    passcode: str

class ClaimRequest(BaseModel):
    passcode: str
    claimant_wallet_id: Optional[UUID] = Field(
        default=None, description="Wallet to credit; omitted means cash-out"
    )

class ClaimResponse(BaseModel):
    status: LinkStatus
    amount: int

class DisbursementRequest(BaseModel):
    passcode: str
    requested_amount: int = Field(..., description="Amount in kobo")
    target_account_number: str
    target_bank_name: str

class ApproveRequest(BaseModel):
    pin: str

class LinkStatusResponse(BaseModel):
    link_id: UUID
    status: LinkStatus

class SweepResponse(BaseModel):
    expired: int

# Events -----------------------------------------------------------------

class LinkChangeEvent(BaseModel):
    link_id: UUID
    new_status: LinkStatus
    amount: Optional[int] = None
    timestamp: datetime

# Advisor ----------------------------------------------------------------

class AdvisorActionRequest(BaseModel):
    output: object = Field(..., description="Raw advisor payload: text, JSON string or object")
    execute: bool = False
    passcode: Optional[str] = Field(
        default=None, description="Passcode for advisor-created links"
    )

class AdvisorActionResponse(BaseModel):
    action: Optional[dict] = None
    result: Optional[dict] = None
