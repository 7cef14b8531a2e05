"""
Construction and teardown of the service components.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .balance import OperatorBalanceGuard
from .claim import ClaimProcessor
from .config import RelayerConfig, Settings
from .db import LinkStore
from .deposit import DepositRecorder
from .fees import FeeCalculator
from .reconcile import StaleClaimSweeper
from .relay import HttpRelayClient, Relay, RelayClientConfig
from .signer import SignatureVerifier

logger = structlog.get_logger()


@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    settings: Settings
    relayer: RelayerConfig
    store: LinkStore
    relay: Relay
    fees: FeeCalculator
    verifier: SignatureVerifier
    guard: OperatorBalanceGuard
    deposits: DepositRecorder
    claims: ClaimProcessor
    sweeper: StaleClaimSweeper

    async def close(self) -> None:
        close = getattr(self.relay, "close", None)
        if close is not None:
            await close()
        self.store.close()
        logger.info("services_closed")


def build_services(
    settings: Settings,
    relay: Optional[Relay] = None,
    store: Optional[LinkStore] = None,
) -> Services:
    """Wire the store, relay client and claim engine from settings."""
    relayer = RelayerConfig.from_settings(settings)

    store = store or LinkStore(
        settings.database_url,
        supported_assets=settings.supported_assets,
        max_amount=settings.max_link_amount,
        amount_decimals=settings.amount_decimals,
    )
    relay = relay or HttpRelayClient(
        RelayClientConfig(
            url=settings.relay_url,
            api_key=settings.relay_api_key,
            operator_address=settings.operator_address,
            timeout=max(settings.withdraw_timeout_seconds, settings.balance_timeout_seconds),
        )
    )
    fees = FeeCalculator(
        base_fee=settings.base_fee,
        percentage_rate=settings.percentage_rate,
        decimals=settings.amount_decimals,
    )
    verifier = SignatureVerifier()
    guard = OperatorBalanceGuard(relay, relayer)

    if settings.is_production and not settings.operator_address:
        logger.warning("operator_address_not_configured")

    return Services(
        settings=settings,
        relayer=relayer,
        store=store,
        relay=relay,
        fees=fees,
        verifier=verifier,
        guard=guard,
        deposits=DepositRecorder(store),
        claims=ClaimProcessor(store, relay, relayer, fees=fees, verifier=verifier, guard=guard),
        sweeper=StaleClaimSweeper(
            store,
            grace_seconds=settings.claim_grace_seconds,
            interval_seconds=settings.reconcile_interval_seconds,
        ),
    )
