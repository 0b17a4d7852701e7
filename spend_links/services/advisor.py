"""Turns structured proposals from the financial advisor into link operations.

The advisor is an external language model. Its output is loosely shaped, so
parsing never raises: anything that is not a recognised action degrades to
``None`` and the reply stays conversational.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session

from ..core.errors import ValidationError
from ..core.money import to_minor_units
from .links import LinkLifecycleEngine
from .settlement import SimulatedDisburser

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


class CreateLinkAction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: Literal["create_link"]
    amount: Decimal = Field(..., gt=0, description="Naira, as proposed by the advisor")
    description: Optional[str] = None

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)


class InitiateTransferAction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: Literal["initiate_transfer"]
    account_number: str
    bank_name: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, description="Naira, as proposed by the advisor")
    account_name: Optional[str] = None

    @field_validator("account_number")
    @classmethod
    def _nuban(cls, value: str) -> str:
        value = value.strip()
        if not re.fullmatch(r"[0-9]{10}", value):
            raise ValueError("account number must be 10 digits")
        return value

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)


StructuredAction = Annotated[
    Union[CreateLinkAction, InitiateTransferAction],
    Field(discriminator="action"),
]

_action_adapter: TypeAdapter[StructuredAction] = TypeAdapter(StructuredAction)


def _extract_payload(raw: Any) -> Optional[dict]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    match = _FENCED_JSON.search(text)
    if match:
        text = match.group(1)
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def propose_action(raw: Any) -> Optional[Union[CreateLinkAction, InitiateTransferAction]]:
    payload = _extract_payload(raw)
    if payload is None:
        return None
    try:
        return _action_adapter.validate_python(payload)
    except PydanticValidationError:
        logger.info("advisor.action.unrecognised", extra={"keys": sorted(map(str, payload))[:10]})
        return None


class AdvisorActionBridge:
    def __init__(
        self,
        session: Session,
        engine: LinkLifecycleEngine,
        settlement: Optional[SimulatedDisburser] = None,
    ) -> None:
        self.session = session
        self.engine = engine
        self.settlement = settlement or SimulatedDisburser()

    def execute_action(
        self,
        action: Union[CreateLinkAction, InitiateTransferAction],
        owner_id: UUID,
        passcode: Optional[str] = None,
    ) -> dict:
        if isinstance(action, CreateLinkAction):
            return self._create_link(action, owner_id, passcode)
        if isinstance(action, InitiateTransferAction):
            return self._simulate_transfer(action, owner_id)
        raise ValidationError(f"Unsupported advisor action: {type(action).__name__}")

    def _create_link(
        self, action: CreateLinkAction, owner_id: UUID, passcode: Optional[str]
    ) -> dict:
        passcode_is_default = passcode is None
        if passcode_is_default:
            passcode = self.engine.settings.advisor_default_passcode
            logger.warning(
                "advisor.create_link.default_passcode",
                extra={"owner_id": str(owner_id)},
            )
        created = self.engine.create_link(
            owner_id,
            action.amount_minor,
            passcode,
            description=action.description,
        )
        return {
            "type": "create_link",
            "link": created.model_dump(mode="json"),
            "passcode_is_default": passcode_is_default,
        }

    def _simulate_transfer(self, action: InitiateTransferAction, owner_id: UUID) -> dict:
        self.engine.ledger.get_wallet(owner_id)
        try:
            record = self.settlement.simulate_transfer(
                self.session,
                wallet_id=owner_id,
                amount=action.amount_minor,
                account_number=action.account_number,
                bank_name=action.bank_name,
                account_name=action.account_name,
            )
            reference, status = record.reference, record.status
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return {
            "type": "initiate_transfer",
            "status": status,
            "reference": reference,
            "amount": action.amount_minor,
        }
