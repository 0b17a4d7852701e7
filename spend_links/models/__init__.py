from .db import Disbursement as DisbursementModel
from .db import IdempotencyRecord as IdempotencyRecordModel
from .db import LedgerEntry as LedgerEntryModel
from .db import LinkStatus
from .db import SecureLink as SecureLinkModel
from .db import Wallet as WalletModel
from .schemas import (
    AdvisorActionRequest,
    AdvisorActionResponse,
    ApproveRequest,
    ClaimRequest,
    ClaimResponse,
    DisbursementRequest,
    LedgerEntryResponse,
    LinkChangeEvent,
    LinkCreate,
    LinkCreated,
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

__all__ = [
    "AdvisorActionRequest",
    "AdvisorActionResponse",
    "ApproveRequest",
    "ClaimRequest",
    "ClaimResponse",
    "DisbursementRequest",
    "LedgerEntryResponse",
    "LinkChangeEvent",
    "LinkCreate",
    "LinkCreated",
    "LinkStatus",
    "LinkStatusResponse",
    "MoneyMovementRequest",
    "OwnerLinkView",
    "PasscodeBody",
    "PinUpdate",
    "PublicLinkView",
    "StatementResponse",
    "SweepResponse",
    "WalletCreate",
    "WalletResponse",
    "DisbursementModel",
    "IdempotencyRecordModel",
    "LedgerEntryModel",
    "SecureLinkModel",
    "WalletModel",
]
