from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import (
    ConflictError,
    DuplicateCodeError,
    InvalidStateError,
    LinkNotFoundError,
    UnauthorizedError,
    UpstreamFailure,
    ValidationError,
)
from ..core.security import (
    burn_verification,
    generate_link_code,
    hash_secret,
    normalize_link_code,
    validate_secret,
    verify_secret,
)
from ..models import (
    ClaimResponse,
    LinkChangeEvent,
    LinkCreated,
    LinkStatus,
    LinkStatusResponse,
    OwnerLinkView,
    PublicLinkView,
    SecureLinkModel,
)
from ..models.db import ESCROWED_STATUSES, utcnow
from .ledger import BalanceLedger, IdempotencyGuard
from .notifications import LinkEventBroker, link_topic, owner_topic
from .repository import LinkRepository
from .settlement import Disburser, SimulatedDisburser


logger = logging.getLogger(__name__)

_ACCOUNT_NUMBER = re.compile(r"^[0-9]{10}$")
_CODE_ATTEMPTS = 5


def as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _require_amount(amount: Any, label: str = "Amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"{label} must be a positive whole number of kobo")
    return amount


class LinkLifecycleEngine:
    """Owns the secure link state machine.

    Every transition is one database transaction: the status compare-and-swap
    and the balance movement it triggers commit together or not at all.
    Change events go out only after the commit.
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[LinkRepository] = None,
        ledger: Optional[BalanceLedger] = None,
        disburser: Optional[Disburser] = None,
        broker: Optional[LinkEventBroker] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.repository = repository or LinkRepository(session)
        self.ledger = ledger or BalanceLedger(session)
        self.disburser = disburser or SimulatedDisburser()
        self.broker = broker
        self.settings = settings or get_settings()
        self.clock = clock
        self.idempotency = IdempotencyGuard(self.repository)

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _is_past_expiry(self, link: SecureLinkModel, now: datetime) -> bool:
        return now > as_utc(link.expires_at)

    def _to_owner_view(self, link: SecureLinkModel) -> OwnerLinkView:
        return OwnerLinkView(
            id=link.id,
            code=link.code,
            amount=link.amount,
            description=link.description,
            status=link.status,
            requested_amount=link.requested_amount,
            target_account_number=link.target_account_number,
            target_bank_name=link.target_bank_name,
            created_at=link.created_at,
            expires_at=link.expires_at,
            updated_at=link.updated_at,
            claimed_at=link.claimed_at,
        )

    def _owned_link(self, link_id: UUID, owner_id: UUID) -> SecureLinkModel:
        link = self.repository.get_by_id(link_id)
        if link is None:
            raise LinkNotFoundError(f"Link {link_id} not found")
        if link.owner_wallet_id != owner_id:
            logger.warning(
                "link.owner_mismatch",
                extra={"link_id": str(link_id), "caller_id": str(owner_id)},
            )
            raise UnauthorizedError()
        return link

    def _transition_link(self, link_id: UUID, owner_id: UUID) -> SecureLinkModel:
        """Like ``_owned_link``, but a resolved link refuses the transition
        whoever the caller is."""
        link = self.repository.get_by_id(link_id)
        if (
            link is not None
            and link.owner_wallet_id != owner_id
            and link.status not in ESCROWED_STATUSES
        ):
            raise InvalidStateError(f"Link is {link.status.value}")
        return self._owned_link(link_id, owner_id)

    def _authenticate_claimant(self, code: str, passcode: str) -> SecureLinkModel:
        """Resolve a link for a non-owner. Unknown codes and wrong passcodes
        fail the same way."""
        normalized = normalize_link_code(code)
        validate_secret(passcode)
        link = self.repository.get_by_code(normalized)
        if link is None:
            burn_verification(self.settings.passcode_hash_rounds)
            logger.warning("link.claimant.unknown_code", extra={"code": normalized})
            raise UnauthorizedError()
        if not verify_secret(passcode, link.passcode_hash):
            logger.warning(
                "link.claimant.bad_passcode",
                extra={"link_id": str(link.id), "code": normalized},
            )
            raise UnauthorizedError()
        return link

    def _require_claimable(self, link: SecureLinkModel) -> None:
        if link.status != LinkStatus.ACTIVE:
            raise InvalidStateError(f"Link is {link.status.value}")
        if self._is_past_expiry(link, self._now()):
            raise InvalidStateError("Link has expired")

    def _publish(self, link_id: UUID, owner_id: UUID, status: LinkStatus, amount: Optional[int]) -> None:
        if self.broker is None:
            return
        event = LinkChangeEvent(
            link_id=link_id,
            new_status=status,
            amount=amount,
            timestamp=self._now(),
        )
        self.broker.publish([owner_topic(owner_id), link_topic(link_id)], event)

    def _refund_escrow(self, link: SecureLinkModel, amount: int, memo: str) -> None:
        self.ledger.credit(
            link.owner_wallet_id,
            amount,
            category="escrow_refund",
            memo=memo,
            link_id=link.id,
        )

    def _resolve_with_refund(
        self,
        link: SecureLinkModel,
        expected: LinkStatus,
        new: LinkStatus,
        event_name: str,
    ) -> LinkStatusResponse:
        link_id, owner_id, amount = link.id, link.owner_wallet_id, link.amount
        try:
            self.repository.update_status(link_id, expected, new, resolved_at=self._now())
            self._refund_escrow(link, amount, f"Secure link {link.code} {new.value}")
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            event_name,
            extra={"link_id": str(link_id), "owner_id": str(owner_id), "amount": amount},
        )
        self._publish(link_id, owner_id, new, amount)
        return LinkStatusResponse(link_id=link_id, status=new)

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------
    def create_link(
        self,
        owner_id: UUID,
        amount: int,
        passcode: str,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LinkCreated:
        _require_amount(amount)
        validate_secret(passcode)

        request_signature = ("create_link", str(owner_id), amount, description)
        cached = self.idempotency.check("create_link", idempotency_key, request_signature)
        if cached is not None:
            logger.info(
                "idempotent.create_link.hit",
                extra={"owner_id": str(owner_id), "idempotency_key": idempotency_key},
            )
            return LinkCreated.model_validate(cached)

        passcode_hash = hash_secret(passcode, self.settings.passcode_hash_rounds)

        for attempt in range(1, _CODE_ATTEMPTS + 1):
            code = generate_link_code()
            if self.repository.get_by_code(code) is not None:
                continue

            now = self._now()
            expires_at = now + timedelta(days=self.settings.link_ttl_days)
            link = SecureLinkModel(
                id=uuid4(),
                code=code,
                owner_wallet_id=owner_id,
                passcode_hash=passcode_hash,
                amount=amount,
                description=description,
                status=LinkStatus.ACTIVE,
                created_at=now,
                updated_at=now,
                expires_at=expires_at,
            )
            try:
                self.ledger.debit(
                    owner_id,
                    amount,
                    category="escrow",
                    memo=f"Secure link {code}",
                    link_id=link.id,
                )
                self.repository.insert(link)
                response = LinkCreated(
                    link_id=link.id,
                    code=code,
                    status=LinkStatus.ACTIVE,
                    amount=amount,
                    expires_at=expires_at,
                )
                self.idempotency.record("create_link", idempotency_key, request_signature, response)
                self.session.commit()
            except DuplicateCodeError:
                self.session.rollback()
                logger.info("link.code.collision", extra={"attempt": attempt})
                continue
            except Exception:
                self.session.rollback()
                raise

            logger.info(
                "link.created",
                extra={"link_id": str(link.id), "owner_id": str(owner_id), "amount": amount},
            )
            self._publish(response.link_id, owner_id, LinkStatus.ACTIVE, amount)
            return response

        raise DuplicateCodeError("Could not allocate a unique link code")

    def get_link(self, link_id: UUID, owner_id: UUID) -> OwnerLinkView:
        return self._to_owner_view(self._owned_link(link_id, owner_id))

    def list_links(
        self, owner_id: UUID, status: Optional[LinkStatus] = None
    ) -> list[OwnerLinkView]:
        return [self._to_owner_view(link) for link in self.repository.list_by_owner(owner_id, status)]

    def list_pending_approvals(self, owner_id: UUID) -> list[OwnerLinkView]:
        return self.list_links(owner_id, LinkStatus.PENDING_APPROVAL)

    def approve(
        self,
        link_id: UUID,
        owner_id: UUID,
        pin: str,
        idempotency_key: Optional[str] = None,
    ) -> LinkStatusResponse:
        validate_secret(pin, "PIN")

        # A replayed key still has to present the right PIN.
        link = self._transition_link(link_id, owner_id)
        wallet = self.ledger.get_wallet(owner_id)
        if not verify_secret(pin, wallet.pin_hash):
            logger.warning(
                "link.approve.unauthorized",
                extra={"link_id": str(link_id), "owner_id": str(owner_id)},
            )
            raise UnauthorizedError()

        request_signature = ("approve", str(link_id), str(owner_id))
        cached = self.idempotency.check("approve", idempotency_key, request_signature)
        if cached is not None:
            logger.info(
                "idempotent.approve.hit",
                extra={"link_id": str(link_id), "idempotency_key": idempotency_key},
            )
            return LinkStatusResponse.model_validate(cached)

        if link.status != LinkStatus.PENDING_APPROVAL:
            raise InvalidStateError(f"Link is {link.status.value}")

        requested = link.requested_amount
        remainder = link.amount - requested
        try:
            self.repository.update_status(
                link_id,
                LinkStatus.PENDING_APPROVAL,
                LinkStatus.APPROVED,
                resolved_at=self._now(),
            )
            self.disburser.disburse(
                self.session,
                wallet_id=owner_id,
                amount=requested,
                link_id=link_id,
                account_number=link.target_account_number,
                bank_name=link.target_bank_name,
            )
            if remainder > 0:
                self._refund_escrow(link, remainder, f"Secure link {link.code} unused balance")
            response = LinkStatusResponse(link_id=link_id, status=LinkStatus.APPROVED)
            self.idempotency.record("approve", idempotency_key, request_signature, response)
            self.session.commit()
        except UpstreamFailure:
            self.session.rollback()
            logger.error(
                "link.approve.upstream_failed",
                extra={"link_id": str(link_id), "amount": requested},
            )
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "link.approved",
            extra={"link_id": str(link_id), "owner_id": str(owner_id), "amount": requested},
        )
        self._publish(link_id, owner_id, LinkStatus.APPROVED, requested)
        return response

    def reject(self, link_id: UUID, owner_id: UUID) -> LinkStatusResponse:
        link = self._transition_link(link_id, owner_id)
        if link.status != LinkStatus.PENDING_APPROVAL:
            raise InvalidStateError(f"Link is {link.status.value}")
        return self._resolve_with_refund(
            link, LinkStatus.PENDING_APPROVAL, LinkStatus.REJECTED, "link.rejected"
        )

    def cancel(self, link_id: UUID, owner_id: UUID) -> LinkStatusResponse:
        link = self._transition_link(link_id, owner_id)
        if link.status not in (LinkStatus.ACTIVE, LinkStatus.PENDING_APPROVAL):
            raise InvalidStateError(f"Link is {link.status.value}")
        return self._resolve_with_refund(link, link.status, LinkStatus.CANCELLED, "link.cancelled")

    # ------------------------------------------------------------------
    # Claimant operations
    # ------------------------------------------------------------------
    def get_link_by_code(self, code: str) -> PublicLinkView:
        link = self.repository.get_by_code(normalize_link_code(code))
        if link is None:
            raise LinkNotFoundError("Link not found")
        status = link.status
        if status == LinkStatus.ACTIVE and self._is_past_expiry(link, self._now()):
            status = LinkStatus.EXPIRED
        return PublicLinkView(
            code=link.code,
            amount=link.amount,
            status=status,
            description=link.description,
        )

    def claimant_link_id(self, code: str, passcode: str) -> UUID:
        """Link id for a claimant's event stream, after passcode verification."""
        return self._authenticate_claimant(code, passcode).id

    def submit_request(
        self,
        code: str,
        passcode: str,
        requested_amount: int,
        target_account_number: str,
        target_bank_name: str,
    ) -> LinkStatusResponse:
        _require_amount(requested_amount, "Requested amount")
        account_number = (target_account_number or "").strip()
        bank_name = (target_bank_name or "").strip()
        if not _ACCOUNT_NUMBER.match(account_number):
            raise ValidationError("Account number must be 10 digits")
        if not bank_name:
            raise ValidationError("Bank name is required")

        link = self._authenticate_claimant(code, passcode)
        self._require_claimable(link)
        if requested_amount > link.amount:
            raise ValidationError("Requested amount exceeds the link amount")

        link_id, owner_id = link.id, link.owner_wallet_id
        try:
            self.repository.update_status(
                link_id,
                LinkStatus.ACTIVE,
                LinkStatus.PENDING_APPROVAL,
                requested_amount=requested_amount,
                target_account_number=account_number,
                target_bank_name=bank_name,
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "link.request.submitted",
            extra={"link_id": str(link_id), "requested_amount": requested_amount},
        )
        self._publish(link_id, owner_id, LinkStatus.PENDING_APPROVAL, requested_amount)
        return LinkStatusResponse(link_id=link_id, status=LinkStatus.PENDING_APPROVAL)

    def claim(
        self,
        code: str,
        passcode: str,
        claimant_wallet_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
    ) -> ClaimResponse:
        request_signature = (
            "claim",
            (code or "").strip().upper(),
            str(claimant_wallet_id) if claimant_wallet_id else None,
        )
        link = self._authenticate_claimant(code, passcode)

        cached = self.idempotency.check("claim", idempotency_key, request_signature)
        if cached is not None:
            logger.info(
                "idempotent.claim.hit",
                extra={"link_id": str(link.id), "idempotency_key": idempotency_key},
            )
            return ClaimResponse.model_validate(cached)

        self._require_claimable(link)

        link_id, owner_id, amount = link.id, link.owner_wallet_id, link.amount
        now = self._now()
        try:
            self.repository.update_status(
                link_id,
                LinkStatus.ACTIVE,
                LinkStatus.CLAIMED,
                claimed_at=now,
                resolved_at=now,
                claimed_by_wallet_id=claimant_wallet_id,
            )
            if claimant_wallet_id is not None:
                self.ledger.credit(
                    claimant_wallet_id,
                    amount,
                    category="link_claim",
                    memo=f"Secure link {link.code}",
                    link_id=link_id,
                )
            else:
                self.disburser.disburse(
                    self.session,
                    wallet_id=owner_id,
                    amount=amount,
                    link_id=link_id,
                )
            response = ClaimResponse(status=LinkStatus.CLAIMED, amount=amount)
            self.idempotency.record("claim", idempotency_key, request_signature, response)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("link.claimed", extra={"link_id": str(link_id), "amount": amount})
        self._publish(link_id, owner_id, LinkStatus.CLAIMED, amount)
        return response

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------
    def expire(self, link_id: UUID, now: Optional[datetime] = None) -> LinkStatusResponse:
        link = self.repository.get_by_id(link_id)
        if link is None:
            raise LinkNotFoundError(f"Link {link_id} not found")
        if link.status != LinkStatus.ACTIVE:
            raise InvalidStateError(f"Link is {link.status.value}")
        if not self._is_past_expiry(link, as_utc(now) if now is not None else self._now()):
            raise InvalidStateError("Link has not expired yet")
        return self._resolve_with_refund(link, LinkStatus.ACTIVE, LinkStatus.EXPIRED, "link.expired")

    def expire_due(self, now: Optional[datetime] = None) -> int:
        """Expire every active link past its deadline. Returns how many expired."""
        cutoff = as_utc(now) if now is not None else self._now()
        link_ids = [link.id for link in self.repository.list_expirable(cutoff)]
        # The listing read opened a transaction; end it before the per-link writes.
        self.session.rollback()

        expired = 0
        for link_id in link_ids:
            try:
                self.expire(link_id, cutoff)
            except ConflictError as exc:
                # Another transition resolved the link first.
                logger.info("link.expire.skipped", extra={"link_id": str(link_id), "reason": str(exc)})
                continue
            expired += 1
        if link_ids:
            logger.info("link.expiry.sweep", extra={"due": len(link_ids), "expired": expired})
        return expired
