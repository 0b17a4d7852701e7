from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..core.errors import ConflictError, DuplicateCodeError
from ..models import IdempotencyRecordModel, LinkStatus, SecureLinkModel
from ..models.db import ESCROWED_STATUSES, utcnow


class LinkRepository:
    """Secure link persistence with a compare-and-swap status update.

    Nothing here commits; the caller owns the transaction.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # Links --------------------------------------------------------------
    def insert(self, link: SecureLinkModel) -> UUID:
        # A collision leaves the session needing a rollback; the caller retries.
        try:
            self.session.add(link)
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateCodeError(f"Link code {link.code} is already in use") from exc
        self.session.refresh(link)
        return link.id

    def get_by_code(self, code: str) -> Optional[SecureLinkModel]:
        stmt = select(SecureLinkModel).where(SecureLinkModel.code == code.strip().upper())
        return self.session.exec(stmt).first()

    def get_by_id(self, link_id: UUID) -> Optional[SecureLinkModel]:
        return self.session.get(SecureLinkModel, link_id)

    def list_by_owner(
        self,
        owner_id: UUID,
        status: Optional[LinkStatus] = None,
    ) -> list[SecureLinkModel]:
        stmt = select(SecureLinkModel).where(SecureLinkModel.owner_wallet_id == owner_id)
        if status is not None:
            stmt = stmt.where(SecureLinkModel.status == status)
        stmt = stmt.order_by(SecureLinkModel.created_at.desc())
        return list(self.session.exec(stmt))

    def escrowed_total(self, owner_id: UUID) -> int:
        """Sum of amounts still held for active or pending links."""
        stmt = (
            select(func.coalesce(func.sum(SecureLinkModel.amount), 0))
            .where(SecureLinkModel.owner_wallet_id == owner_id)
            .where(SecureLinkModel.status.in_(list(ESCROWED_STATUSES)))
        )
        return self.session.exec(stmt).one()

    def list_expirable(self, now: datetime) -> list[SecureLinkModel]:
        stmt = (
            select(SecureLinkModel)
            .where(SecureLinkModel.status == LinkStatus.ACTIVE)
            .where(SecureLinkModel.expires_at < now)
            .order_by(SecureLinkModel.expires_at)
        )
        return list(self.session.exec(stmt))

    def update_status(
        self,
        link_id: UUID,
        expected: LinkStatus,
        new: LinkStatus,
        **fields: Any,
    ) -> SecureLinkModel:
        """Move ``link_id`` from ``expected`` to ``new`` in a single conditional write.

        Raises ConflictError if the stored status no longer matches ``expected``.
        """
        values = {"status": new, "updated_at": utcnow(), **fields}
        stmt = (
            update(SecureLinkModel)
            .where(SecureLinkModel.id == link_id)
            .where(SecureLinkModel.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            raise ConflictError(
                f"Link {link_id} is no longer {expected.value}; it was changed concurrently"
            )
        link = self.session.get(SecureLinkModel, link_id)
        self.session.refresh(link)
        return link

    # Idempotency store --------------------------------------------------
    def fetch_idempotency(
        self, route: str, key: str
    ) -> Optional[IdempotencyRecordModel]:
        stmt = (
            select(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.route == route)
            .where(IdempotencyRecordModel.key == key)
        )
        return self.session.exec(stmt).first()

    def save_idempotency(
        self,
        *,
        route: str,
        key: str,
        signature: str,
        payload: str,
    ) -> None:
        record = IdempotencyRecordModel(
            route=route,
            key=key,
            request_signature=signature,
            response_payload=payload,
        )
        self.session.add(record)
