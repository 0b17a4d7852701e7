from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional, Tuple
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from ..core.config import Settings, get_settings
from ..core.errors import (
    DuplicateIdempotencyKeyError,
    InsufficientFundsError,
    UnauthorizedError,
    ValidationError,
    WalletNotFoundError,
)
from ..core.security import hash_secret, validate_secret, verify_secret
from ..models import (
    LedgerEntryModel,
    LedgerEntryResponse,
    MoneyMovementRequest,
    StatementResponse,
    WalletCreate,
    WalletModel,
    WalletResponse,
)
from ..models.db import utcnow
from .repository import LinkRepository


logger = logging.getLogger(__name__)


class BalanceLedger:
    """Atomic debit/credit against wallet balances.

    Both operations append a ledger entry and leave committing to the caller,
    so they land in the same transaction as the link transition that caused them.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_wallet(self, wallet_id: UUID) -> WalletModel:
        wallet = self.session.get(WalletModel, wallet_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
        return wallet

    def debit(
        self,
        wallet_id: UUID,
        amount: int,
        *,
        category: str,
        memo: Optional[str] = None,
        link_id: Optional[UUID] = None,
    ) -> LedgerEntryModel:
        self._check_amount(amount)
        stmt = (
            update(WalletModel)
            .where(WalletModel.id == wallet_id)
            .where(WalletModel.balance >= amount)
            .values(balance=WalletModel.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            self.get_wallet(wallet_id)
            raise InsufficientFundsError("Insufficient funds")
        return self._append_entry(wallet_id, -amount, "DEBIT", category, memo, link_id)

    def credit(
        self,
        wallet_id: UUID,
        amount: int,
        *,
        category: str,
        memo: Optional[str] = None,
        link_id: Optional[UUID] = None,
    ) -> LedgerEntryModel:
        self._check_amount(amount)
        stmt = (
            update(WalletModel)
            .where(WalletModel.id == wallet_id)
            .values(balance=WalletModel.balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
        return self._append_entry(wallet_id, amount, "CREDIT", category, memo, link_id)

    def list_entries(self, wallet_id: UUID) -> list[LedgerEntryModel]:
        stmt = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.account_id == wallet_id)
            .order_by(LedgerEntryModel.ts.desc())
        )
        return list(self.session.exec(stmt))

    def _check_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive whole number of kobo")

    def _append_entry(
        self,
        wallet_id: UUID,
        amount: int,
        entry_type: str,
        category: str,
        memo: Optional[str],
        link_id: Optional[UUID],
    ) -> LedgerEntryModel:
        entry = LedgerEntryModel(
            account_id=wallet_id,
            amount=amount,
            type=entry_type,
            category=category,
            ref=memo,
            link_id=link_id,
        )
        self.session.add(entry)
        self.session.flush()
        return entry


def json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


class IdempotencyGuard:
    """Replays stored responses for repeated (route, key) pairs."""

    def __init__(self, repository: LinkRepository) -> None:
        self.repository = repository

    def _encode_signature(self, signature: Tuple[Any, ...]) -> str:
        return json.dumps(signature, default=json_default, sort_keys=True)

    def _serialize(self, payload: Any) -> str:
        if hasattr(payload, "model_dump"):
            data = payload.model_dump(mode="json")
        else:
            data = payload
        return json.dumps(data, default=json_default, sort_keys=True)

    def check(
        self,
        route: str,
        idempotency_key: Optional[str],
        request_signature: Tuple[Any, ...],
    ) -> Optional[dict]:
        if not idempotency_key:
            return None
        record = self.repository.fetch_idempotency(route, idempotency_key)
        if record is None:
            return None

        signature = self._encode_signature(request_signature)
        if record.request_signature != signature:
            raise DuplicateIdempotencyKeyError(
                "Idempotency key was previously used with different parameters"
            )

        return json.loads(record.response_payload)

    def record(
        self,
        route: str,
        idempotency_key: Optional[str],
        request_signature: Tuple[Any, ...],
        response_payload: Any,
    ) -> None:
        if not idempotency_key:
            return
        self.repository.save_idempotency(
            route=route,
            key=idempotency_key,
            signature=self._encode_signature(request_signature),
            payload=self._serialize(response_payload),
        )


class WalletService:
    def __init__(
        self,
        session: Session,
        ledger: Optional[BalanceLedger] = None,
        repository: Optional[LinkRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or BalanceLedger(session)
        self.repository = repository or LinkRepository(session)
        self.idempotency = IdempotencyGuard(self.repository)
        self.settings = settings or get_settings()

    def _wallet_to_response(self, wallet: WalletModel) -> WalletResponse:
        return WalletResponse(
            id=wallet.id,
            owner_name=wallet.owner_name,
            currency=wallet.currency,
            created_at=wallet.created_at,
            balance=wallet.balance,
            escrowed=self.repository.escrowed_total(wallet.id),
            has_pin=wallet.pin_hash is not None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_wallet(self, payload: WalletCreate) -> WalletResponse:
        wallet = WalletModel(owner_name=payload.owner_name)
        if payload.pin is not None:
            validate_secret(payload.pin, "PIN")
            wallet.pin_hash = hash_secret(payload.pin, self.settings.passcode_hash_rounds)
        self.session.add(wallet)
        self.session.commit()
        self.session.refresh(wallet)
        logger.info(
            "wallet.created",
            extra={"wallet_id": str(wallet.id), "owner_name": wallet.owner_name},
        )
        return self._wallet_to_response(wallet)

    def get_wallet(self, wallet_id: UUID) -> WalletResponse:
        return self._wallet_to_response(self.ledger.get_wallet(wallet_id))

    def set_pin(self, wallet_id: UUID, pin: str, current_pin: Optional[str] = None) -> WalletResponse:
        validate_secret(pin, "PIN")
        wallet = self.ledger.get_wallet(wallet_id)
        if wallet.pin_hash is not None and not verify_secret(current_pin or "", wallet.pin_hash):
            logger.warning("wallet.pin.unauthorized", extra={"wallet_id": str(wallet_id)})
            raise UnauthorizedError()
        wallet.pin_hash = hash_secret(pin, self.settings.passcode_hash_rounds)
        wallet.updated_at = utcnow()
        self.session.add(wallet)
        self.session.commit()
        self.session.refresh(wallet)
        logger.info("wallet.pin.updated", extra={"wallet_id": str(wallet_id)})
        return self._wallet_to_response(wallet)

    def deposit(
        self,
        wallet_id: UUID,
        payload: MoneyMovementRequest,
        idempotency_key: str,
    ) -> WalletResponse:
        request_signature = ("deposit", str(wallet_id), payload.amount, payload.memo)
        cached = self.idempotency.check("deposit", idempotency_key, request_signature)
        if cached is not None:
            logger.info(
                "idempotent.deposit.hit",
                extra={"wallet_id": str(wallet_id), "idempotency_key": idempotency_key},
            )
            return WalletResponse.model_validate(cached)

        try:
            self.ledger.credit(wallet_id, payload.amount, category="deposit", memo=payload.memo)
            wallet = self.ledger.get_wallet(wallet_id)
            self.session.refresh(wallet)
            response = self._wallet_to_response(wallet)
            self.idempotency.record("deposit", idempotency_key, request_signature, response)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "wallet.deposit",
            extra={
                "wallet_id": str(wallet_id),
                "amount": payload.amount,
                "balance": response.balance,
            },
        )
        return response

    def get_statement(
        self,
        wallet_id: UUID,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> StatementResponse:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        self.ledger.get_wallet(wallet_id)

        entries = self.ledger.list_entries(wallet_id)

        start_index = 0
        if cursor:
            try:
                cursor_ts = datetime.fromisoformat(cursor)
            except ValueError as exc:
                raise ValidationError("Invalid cursor") from exc
            for idx, entry in enumerate(entries):
                if entry.ts.isoformat() == cursor_ts.isoformat():
                    start_index = idx + 1
                    break

        slice_entries = entries[start_index : start_index + limit]
        next_cursor = None
        if start_index + limit < len(entries):
            next_cursor = slice_entries[-1].ts.isoformat()

        items = [
            LedgerEntryResponse(
                id=entry.id,
                ts=entry.ts,
                account_id=entry.account_id,
                amount=entry.amount,
                type=entry.type,
                category=entry.category,
                ref=entry.ref,
                link_id=entry.link_id,
            )
            for entry in slice_entries
        ]

        return StatementResponse(items=items, next_cursor=next_cursor)
