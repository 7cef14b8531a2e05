"""
Tests for the operator balance guard and its configuration.
"""

import asyncio
from decimal import Decimal

import pydantic
import pytest

from paylink_api.balance import OperatorBalanceGuard
from paylink_api.config import RelayerConfig, Settings
from paylink_api.errors import InsufficientBalanceError, RelayTimeoutError, TransientRelayError


class TestSafetyBuffer:
    """Tests for environment-dependent safety buffer resolution."""

    def test_production_default(self):
        assert Settings(environment="production").resolved_safety_buffer() == Decimal("0.01")

    def test_development_default(self):
        assert Settings(environment="development").resolved_safety_buffer() == Decimal("0.001")

    def test_test_default(self):
        assert Settings(environment="test").resolved_safety_buffer() == Decimal("0.001")

    def test_unknown_environment_uses_development_default(self):
        assert Settings(environment="staging").resolved_safety_buffer() == Decimal("0.001")

    def test_explicit_override(self):
        settings = Settings(environment="production", safety_buffer=Decimal("0.5"))
        assert settings.resolved_safety_buffer() == Decimal("0.5")

    def test_relayer_config_from_settings(self):
        settings = Settings(
            environment="production",
            operator_address="0xoperator",
            relay_fee_estimate=Decimal("0.003"),
            withdraw_timeout_seconds=30,
            balance_timeout_seconds=5,
        )

        config = RelayerConfig.from_settings(settings)

        assert config.operator_address == "0xoperator"
        assert config.safety_buffer == Decimal("0.01")
        assert config.relay_fee_estimate == Decimal("0.003")
        assert config.withdraw_timeout == 30
        assert config.balance_timeout == 5


class TestClaimGrace:
    """The sweep grace period must outlast the relay calls of a claim."""

    def test_default_is_valid(self):
        settings = Settings()
        assert settings.claim_grace_seconds > settings.withdraw_timeout_seconds + settings.balance_timeout_seconds

    def test_grace_below_withdraw_timeout_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(claim_grace_seconds=30, withdraw_timeout_seconds=60)

    def test_grace_equal_to_timeouts_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(claim_grace_seconds=70, withdraw_timeout_seconds=60, balance_timeout_seconds=10)

    def test_grace_above_timeouts_accepted(self):
        settings = Settings(claim_grace_seconds=71, withdraw_timeout_seconds=60, balance_timeout_seconds=10)
        assert settings.claim_grace_seconds == 71


class TestOperatorBalanceGuard:
    """Tests for OperatorBalanceGuard.assert_sufficient."""

    @pytest.mark.asyncio
    async def test_sufficient_balance(self, relay, relayer_config):
        relay.balance = Decimal("1")
        guard = OperatorBalanceGuard(relay, relayer_config)

        assert await guard.assert_sufficient(Decimal("0.5")) == Decimal("1")

    @pytest.mark.asyncio
    async def test_exact_margin_accepted(self, relay, relayer_config):
        """available == required + buffer is enough."""
        relay.balance = Decimal("0.501")
        guard = OperatorBalanceGuard(relay, relayer_config)

        await guard.assert_sufficient(Decimal("0.5"))

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, relay, relayer_config):
        relay.balance = Decimal("0.5")
        guard = OperatorBalanceGuard(relay, relayer_config)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await guard.assert_sufficient(Decimal("0.5"))

        err = exc_info.value
        assert err.required == Decimal("0.501")
        assert err.available == Decimal("0.5")
        assert err.shortfall == Decimal("0.001")
        assert err.retryable is True

    @pytest.mark.asyncio
    async def test_balance_is_never_cached(self, relay, relayer_config):
        guard = OperatorBalanceGuard(relay, relayer_config)

        await guard.assert_sufficient(Decimal("1"))
        relay.balance = Decimal("0")
        with pytest.raises(InsufficientBalanceError):
            await guard.assert_sufficient(Decimal("1"))

        assert relay.balance_reads == 2

    @pytest.mark.asyncio
    async def test_balance_read_timeout(self):
        config = RelayerConfig(
            operator_address="0xoperator",
            safety_buffer=Decimal("0.001"),
            relay_fee_estimate=Decimal("0.002"),
            balance_timeout=0.05,
        )

        class SlowRelay:
            async def get_balance(self):
                await asyncio.sleep(1)
                return Decimal("10")

        guard = OperatorBalanceGuard(SlowRelay(), config)

        with pytest.raises(RelayTimeoutError) as exc_info:
            await guard.assert_sufficient(Decimal("1"))
        assert isinstance(exc_info.value, TransientRelayError)
