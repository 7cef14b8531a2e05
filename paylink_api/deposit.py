"""
Deposit recording.

The sender deposits into the shielded pool client-side; this module only
attaches the resulting reference to the link. Re-sending the same reference
is a safe retry.
"""

import structlog

from .db import Link, LinkState, LinkStore, TransactionRecord, payment_links
from .errors import AlreadyDepositedError, TransitionConflictError, ValidationError
from .signer import normalize_address

logger = structlog.get_logger()

MAX_DEPOSIT_REF_LENGTH = payment_links.c.deposit_proof.type.length
MAX_SENDER_LENGTH = payment_links.c.from_address.type.length


class DepositRecorder:
    def __init__(self, store: LinkStore):
        self.store = store

    def attach(self, link_id: str, external_deposit_ref: str, from_address: str) -> Link:
        """
        Move a link CREATED -> DEPOSITED and record its deposit proof.

        Raises:
            ValidationError: empty or oversized reference or sender
            NotFoundError: unknown link
            AlreadyDepositedError: link already carries a different deposit
        """
        ref = (external_deposit_ref or "").strip()
        if not ref:
            raise ValidationError("externalDepositRef required")
        if len(ref) > MAX_DEPOSIT_REF_LENGTH:
            raise ValidationError(
                f"externalDepositRef longer than {MAX_DEPOSIT_REF_LENGTH} characters",
                length=len(ref),
            )
        sender = normalize_address((from_address or "").strip()) or None
        if sender and len(sender) > MAX_SENDER_LENGTH:
            raise ValidationError(
                f"fromAddress longer than {MAX_SENDER_LENGTH} characters",
                length=len(sender),
            )

        link = self.store.get(link_id)
        audit = TransactionRecord(
            link_id=link_id,
            type="deposit",
            status="confirmed",
            amount=link.amount,
            asset_tag=link.asset_tag,
            tx_hash=ref,
            from_address=sender,
        )

        try:
            link = self.store.transition(
                link_id,
                LinkState.CREATED,
                LinkState.DEPOSITED,
                audit=audit,
                deposit_proof=ref,
                from_address=sender,
            )
        except TransitionConflictError:
            current = self.store.get(link_id)
            if current.deposit_proof == ref:
                logger.info("deposit_already_recorded", link_id=link_id, deposit_ref=ref)
                return current

            logger.warning(
                "deposit_rejected",
                link_id=link_id,
                deposit_ref=ref,
                state=current.state.value,
                race=True,
            )
            raise AlreadyDepositedError(
                f"Deposit already recorded for link {link_id}",
                link_id=link_id,
                state=current.state,
            )

        logger.info(
            "deposit_recorded",
            link_id=link_id,
            deposit_ref=ref,
            from_address=sender,
            amount=format(link.amount, "f"),
        )
        return link
