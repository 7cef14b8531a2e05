"""
Reconciliation sweep for links stuck in CLAIMING.

A claim whose worker died between reservation and finalize leaves its link
in CLAIMING. The sweep releases such links after a grace period so they can
be claimed again. If the original relay call later reports success, the
claim processor finds the reservation gone and quarantines the link.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog

from .db import LinkState, LinkStore, TransactionRecord
from .errors import TransitionConflictError

logger = structlog.get_logger()


@dataclass
class SweepState:
    """Current sweeper state."""

    is_running: bool = False
    last_run_time: Optional[datetime] = None
    released: int = 0
    skipped: int = 0
    released_ids: list[str] = field(default_factory=list)  # last cycle only


class StaleClaimSweeper:
    def __init__(self, store: LinkStore, grace_seconds: int = 300, interval_seconds: int = 60):
        self.store = store
        self.grace = timedelta(seconds=grace_seconds)
        self.interval_seconds = interval_seconds
        self.state = SweepState()

    def run_once(self) -> list[str]:
        """
        Roll back every CLAIMING link older than the grace period.

        Returns ids of links released.
        """
        released = []
        for link in self.store.list_stale_claims(self.grace):
            audit = TransactionRecord(
                link_id=link.id,
                type="withdraw",
                status="expired",
                amount=link.amount,
                asset_tag=link.asset_tag,
                to_address=link.reserved_by,
                error=f"reservation older than {int(self.grace.total_seconds())}s",
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
                # Finalised, rolled back or re-reserved in the meantime.
                self.state.skipped += 1
                logger.info("stale_claim_skipped", link_id=link.id, state=e.actual.value)
                continue

            released.append(link.id)
            logger.warning(
                "stale_claim_released",
                link_id=link.id,
                reserved_by=link.reserved_by,
                reserved_at=link.updated_at.isoformat(),
            )

        self.state.released += len(released)
        self.state.released_ids = released
        self.state.last_run_time = datetime.now()
        return released

    def run(self) -> None:
        """Sweep continuously."""
        self.state.is_running = True
        logger.info("sweeper_starting", interval=self.interval_seconds, grace=str(self.grace))

        while self.state.is_running:
            try:
                released = self.run_once()
                logger.info(
                    "sweep_cycle_complete",
                    released=len(released),
                    total_released=self.state.released,
                )
            except Exception as e:
                logger.error("sweep_cycle_error", error=str(e))

            time.sleep(self.interval_seconds)

    def stop(self) -> None:
        self.state.is_running = False
        logger.info("sweeper_stopping")
