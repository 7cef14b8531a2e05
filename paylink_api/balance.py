"""
Operator balance guard.

The relayer account pays every claim, so its balance is the one shared
mutable resource in the system. It is read fresh from the relay on every
check and never cached across requests.
"""

import asyncio
from decimal import Decimal

import structlog

from .config import RelayerConfig
from .errors import InsufficientBalanceError, RelayTimeoutError
from .relay import Relay

logger = structlog.get_logger()


class OperatorBalanceGuard:
    def __init__(self, relay: Relay, config: RelayerConfig):
        self.relay = relay
        self.config = config

    async def read_balance(self) -> Decimal:
        try:
            return await asyncio.wait_for(self.relay.get_balance(), timeout=self.config.balance_timeout)
        except asyncio.TimeoutError as e:
            raise RelayTimeoutError("Operator balance read timed out") from e

    async def assert_sufficient(self, required_amount: Decimal) -> Decimal:
        """
        Ensure the operator can cover `required_amount` plus the safety buffer.

        Returns:
            The balance that was observed.

        Raises:
            InsufficientBalanceError: balance below required amount + buffer
            TransientRelayError: balance could not be read
        """
        available = await self.read_balance()
        required = Decimal(required_amount) + self.config.safety_buffer

        if available < required:
            logger.warning(
                "operator_balance_low",
                operator=self.config.operator_address,
                required=format(required, "f"),
                available=format(available, "f"),
            )
            raise InsufficientBalanceError(required=required, available=available)

        logger.debug(
            "operator_balance_ok",
            required=format(required, "f"),
            available=format(available, "f"),
        )
        return available
