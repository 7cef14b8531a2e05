"""
Claim processing - the exactly-once payout state machine.

    CREATED --deposit proof attached--> DEPOSITED
    DEPOSITED --reserve (CAS)--> CLAIMING
    CLAIMING --relay success--> CLAIMED
    CLAIMING --relay failure / low balance--> DEPOSITED

The reservation (DEPOSITED -> CLAIMING) is committed before the relay is
called. Only the caller whose conditional update matched may invoke
`Relay.withdraw`; every other concurrent caller fails the CAS and never
touches the relay. Do not reorder these steps.

The reserve step writes a fresh reservation token. Finalize and rollback
only match while that token is still on the row, so a worker whose
reservation was released by the stale-claim sweep cannot finalize or
release a newer one.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from web3 import Web3

from .balance import OperatorBalanceGuard
from .config import RelayerConfig
from .db import Link, LinkState, LinkStore, TransactionRecord, format_amount, new_id
from .errors import (
    AlreadyClaimedError,
    ClaimInProgressError,
    FatalConsistencyError,
    NotClaimableError,
    RelayTimeoutError,
    TransitionConflictError,
    UnauthorizedError,
    ValidationError,
)
from .fees import FeeBreakdown, FeeCalculator
from .relay import Relay
from .signer import SignatureVerifier

logger = structlog.get_logger()


@dataclass(frozen=True)
class ClaimReceipt:
    """Result of a successful claim."""

    link_id: str
    recipient: str
    payout_proof: str
    fees: FeeBreakdown


def normalize_recipient(recipient: str) -> str:
    """Checksummed recipient address, or ValidationError."""
    value = (recipient or "").strip()
    if not Web3.is_address(value):
        raise ValidationError("Invalid recipient wallet address", recipient=recipient)
    return Web3.to_checksum_address(value)


def ensure_claimable(link: Link) -> None:
    """Raise the NotClaimableError variant matching the link state."""
    if link.state == LinkState.DEPOSITED:
        return
    if link.state == LinkState.CREATED:
        raise NotClaimableError(link.id, "not_deposited", f"Link {link.id} has no deposit recorded")
    if link.state == LinkState.CLAIMING:
        raise ClaimInProgressError(link.id)
    if link.state == LinkState.CLAIMED:
        raise AlreadyClaimedError(link.id)
    raise NotClaimableError(link.id, "failed", f"Link {link.id} is held for manual reconciliation")


class ClaimProcessor:
    """
    Orchestrates verify -> reserve -> balance guard -> relay -> finalize.

    Holds no locks; correctness rests on `LinkStore.transition`.
    """

    def __init__(
        self,
        store: LinkStore,
        relay: Relay,
        config: RelayerConfig,
        fees: Optional[FeeCalculator] = None,
        verifier: Optional[SignatureVerifier] = None,
        guard: Optional[OperatorBalanceGuard] = None,
    ):
        self.store = store
        self.relay = relay
        self.config = config
        self.fees = fees or FeeCalculator()
        self.verifier = verifier or SignatureVerifier()
        self.guard = guard or OperatorBalanceGuard(relay, config)

    async def claim(self, link_id: str, recipient: str, auth_signature: str) -> ClaimReceipt:
        """
        Pay a deposited link out to `recipient`, exactly once.

        Raises:
            NotFoundError, ValidationError, UnauthorizedError, FeeExceedsAmountError:
                rejected before any state change
            NotClaimableError / AlreadyClaimedError / ClaimInProgressError:
                link is not (or no longer) DEPOSITED
            InsufficientBalanceError, TransientRelayError, PermanentRelayError:
                reservation rolled back, link is DEPOSITED again
            FatalConsistencyError: payout sent but the link could not be finalised
        """
        # 1. Fetch and check state
        link = self.store.get(link_id)
        ensure_claimable(link)
        recipient = normalize_recipient(recipient)

        # 2. Authorisation
        if not self.verifier.verify_claim(recipient, link.id, link.amount, auth_signature):
            logger.warning("claim_unauthorized", link_id=link_id, recipient=recipient)
            raise UnauthorizedError(
                "Signature does not authorise this claim",
                link_id=link_id,
                recipient=recipient,
            )

        # 3. Fees (permanent rejection if nothing is left to pay out)
        fees = self.fees.compute_net(link.amount)

        # 4. Reserve
        link = self._reserve(link, recipient)

        # 5 + 6. Balance re-check and payout; anything failing here rolls back.
        try:
            await self.guard.assert_sufficient(fees.net + self.config.relay_fee_estimate)
            payout_proof = await self._withdraw(fees.net, recipient)
        except asyncio.CancelledError:
            self._rollback(link, recipient, fees, "cancelled")
            raise
        except Exception as e:
            self._rollback(link, recipient, fees, getattr(e, "code", type(e).__name__), error=e)
            raise

        # 7 + 8. Finalize together with the audit record
        return self._finalize(link, recipient, fees, payout_proof)

    def _reserve(self, link: Link, recipient: str) -> Link:
        try:
            reserved = self.store.transition(
                link.id,
                LinkState.DEPOSITED,
                LinkState.CLAIMING,
                reserved_by=recipient,
                reservation=new_id(),
            )
        except TransitionConflictError as e:
            logger.info(
                "claim_reservation_lost",
                link_id=link.id,
                recipient=recipient,
                state=e.actual.value,
                race=True,
            )
            if e.actual == LinkState.CLAIMING:
                raise ClaimInProgressError(link.id) from e
            if e.actual == LinkState.CLAIMED:
                raise AlreadyClaimedError(link.id) from e
            ensure_claimable(self.store.get(link.id))
            raise ClaimInProgressError(link.id) from e

        logger.info("claim_reserved", link_id=link.id, recipient=recipient)
        return reserved

    async def _withdraw(self, amount: Decimal, recipient: str) -> str:
        try:
            return await asyncio.wait_for(
                self.relay.withdraw(amount, recipient),
                timeout=self.config.withdraw_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RelayTimeoutError(
                f"Relay withdraw exceeded {self.config.withdraw_timeout}s",
                timeout=self.config.withdraw_timeout,
            ) from e

    def _rollback(
        self,
        link: Link,
        recipient: str,
        fees: FeeBreakdown,
        reason: str,
        error: Optional[Exception] = None,
    ) -> None:
        audit = TransactionRecord(
            link_id=link.id,
            type="withdraw",
            status="rolled_back",
            amount=fees.net,
            asset_tag=link.asset_tag,
            to_address=recipient,
            error=str(error) if error else reason,
        )
        try:
            self.store.transition(
                link.id,
                LinkState.CLAIMING,
                LinkState.DEPOSITED,
                audit=audit,
                expected={"reservation": link.reservation},
                reserved_by=None,
                reservation=None,
            )
        except TransitionConflictError as e:
            # Reservation expired and was released, possibly re-reserved since.
            logger.error(
                "claim_rollback_conflict",
                link_id=link.id,
                recipient=recipient,
                state=e.actual.value,
            )
            return

        logger.warning(
            "claim_rolled_back",
            link_id=link.id,
            recipient=recipient,
            reason=reason,
            retryable=getattr(error, "retryable", False),
        )

    def _finalize(self, link: Link, recipient: str, fees: FeeBreakdown, payout_proof: str) -> ClaimReceipt:
        audit = TransactionRecord(
            link_id=link.id,
            type="withdraw",
            status="confirmed",
            amount=fees.net,
            asset_tag=link.asset_tag,
            tx_hash=payout_proof,
            from_address=self.config.operator_address or None,
            to_address=recipient,
        )
        try:
            self.store.transition(
                link.id,
                LinkState.CLAIMING,
                LinkState.CLAIMED,
                audit=audit,
                expected={"reservation": link.reservation},
                reserved_by=None,
                reservation=None,
                claimed_by=recipient,
                payout_proof=payout_proof,
            )
        except TransitionConflictError as e:
            self._quarantine(link, recipient, fees, payout_proof, e.actual)
            raise FatalConsistencyError(
                f"Payout {payout_proof} sent but link {link.id} could not be finalised",
                link_id=link.id,
                recipient=recipient,
                payout_proof=payout_proof,
                state=e.actual,
            ) from e

        logger.info(
            "claim_finalized",
            link_id=link.id,
            recipient=recipient,
            net=format_amount(fees.net),
            payout_proof=payout_proof,
        )
        return ClaimReceipt(link_id=link.id, recipient=recipient, payout_proof=payout_proof, fees=fees)

    def _quarantine(
        self,
        link: Link,
        recipient: str,
        fees: FeeBreakdown,
        payout_proof: str,
        state: LinkState,
    ) -> None:
        """Leave an audit trail and take the link out of circulation."""
        logger.critical(
            "claim_finalize_conflict",
            link_id=link.id,
            recipient=recipient,
            net=format_amount(fees.net),
            asset_tag=link.asset_tag,
            payout_proof=payout_proof,
            state=state.value,
        )
        self.store.append_transaction(
            TransactionRecord(
                link_id=link.id,
                type="withdraw",
                status="fatal",
                amount=fees.net,
                asset_tag=link.asset_tag,
                tx_hash=payout_proof,
                from_address=self.config.operator_address or None,
                to_address=recipient,
                error=f"finalize conflict: link was {state.value}",
            )
        )
        if state in (LinkState.DEPOSITED, LinkState.CLAIMING):
            try:
                self.store.transition(
                    link.id, state, LinkState.FAILED, reserved_by=None, reservation=None
                )
                logger.critical("link_quarantined", link_id=link.id, previous_state=state.value)
            except TransitionConflictError as e:
                logger.critical(
                    "link_quarantine_failed",
                    link_id=link.id,
                    state=e.actual.value,
                )
