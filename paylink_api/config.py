"""
Configuration for the Paylink service.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Safety buffer kept on the operator account when none is configured explicitly.
# Production absorbs more fee-estimation drift than local/test relays.
DEFAULT_SAFETY_BUFFERS = {
    "production": Decimal("0.01"),
    "development": Decimal("0.001"),
    "test": Decimal("0.001"),
}


class Settings(BaseSettings):
    """
    Service configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Server
    # WARNING: If using host="0.0.0.0" (externally accessible), set API_TOKEN
    # so the operator endpoints are not open to the world.
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external)",
    )
    port: int = Field(default=8000, description="API port")
    debug: bool = Field(default=False, description="Enable debug mode (uvicorn reload)")
    environment: str = Field(
        default="development",
        description="Deployment environment: development, test or production",
    )

    # Authentication for operator endpoints (link listing, operator health)
    api_token: Optional[str] = Field(
        default=None,
        description="API token for operator endpoints (REQUIRED for production use)",
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins",
    )

    # Storage
    database_url: str = Field(
        default="sqlite:///./paylink.db",
        description="SQLAlchemy database URL (sqlite:///... or postgresql://...)",
    )

    # Relay
    relay_url: str = Field(
        default="http://localhost:8787",
        description="Base URL of the shielded-pool relay service",
    )
    relay_api_key: Optional[str] = Field(default=None, description="Relay API key")
    operator_address: str = Field(
        default="",
        description="Relayer account that pays out claims",
    )
    safety_buffer: Optional[Decimal] = Field(
        default=None,
        description="Balance kept in reserve on the operator account (default depends on environment)",
    )
    relay_fee_estimate: Decimal = Field(
        default=Decimal("0.002"),
        description="Estimated relay fee added to every payout by the balance guard",
    )
    withdraw_timeout_seconds: float = Field(
        default=60.0,
        description="Hard bound on a single relay withdraw call",
    )
    balance_timeout_seconds: float = Field(
        default=10.0,
        description="Hard bound on an operator balance read",
    )

    # Fees
    base_fee: Decimal = Field(default=Decimal("0.006"), description="Fixed withdrawal fee")
    percentage_rate: Decimal = Field(
        default=Decimal("0.0035"),
        description="Proportional withdrawal fee (0.0035 = 0.35%)",
    )
    amount_decimals: int = Field(default=9, description="Fractional digits kept for amounts")

    # Links
    supported_assets: list[str] = Field(
        default=["SOL", "USDC", "USDT"],
        description="Accepted asset tags",
    )
    max_link_amount: Decimal = Field(default=Decimal("100"), description="Largest amount per link")

    # Reconciliation
    claim_grace_seconds: int = Field(
        default=300,
        description="Age after which a CLAIMING link is rolled back by the sweep",
    )
    reconcile_interval_seconds: int = Field(
        default=60,
        description="Poll interval of the continuous reconciliation sweep",
    )

    @model_validator(mode="after")
    def validate_claim_grace(self) -> "Settings":
        """A reservation must outlive the relay calls made under it."""
        check_claim_grace(
            self.claim_grace_seconds,
            self.withdraw_timeout_seconds,
            self.balance_timeout_seconds,
        )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def resolved_safety_buffer(self) -> Decimal:
        """Explicit SAFETY_BUFFER, or the environment default."""
        if self.safety_buffer is not None:
            return self.safety_buffer
        return DEFAULT_SAFETY_BUFFERS.get(
            self.environment.lower(), DEFAULT_SAFETY_BUFFERS["development"]
        )


def check_claim_grace(grace_seconds: float, withdraw_timeout: float, balance_timeout: float) -> None:
    """
    Reject a sweep grace period the claim path can still be inside.

    The sweep may only release a CLAIMING link once its worker has
    necessarily given up on the balance read and the withdraw call.
    """
    limit = withdraw_timeout + balance_timeout
    if grace_seconds <= limit:
        raise ValueError(
            f"claim_grace_seconds ({grace_seconds}) must exceed "
            f"withdraw_timeout_seconds + balance_timeout_seconds ({limit})"
        )


@dataclass(frozen=True)
class RelayerConfig:
    """Operator account parameters shared by the balance guard and claim processor."""

    operator_address: str
    safety_buffer: Decimal
    relay_fee_estimate: Decimal
    withdraw_timeout: float = 60.0
    balance_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayerConfig":
        """Build the operator configuration from environment settings."""
        return cls(
            operator_address=settings.operator_address,
            safety_buffer=settings.resolved_safety_buffer(),
            relay_fee_estimate=settings.relay_fee_estimate,
            withdraw_timeout=settings.withdraw_timeout_seconds,
            balance_timeout=settings.balance_timeout_seconds,
        )


# Alternate .env file, set by `paylink serve --config` for the server process.
ENV_FILE_VAR = "PAYLINK_ENV_FILE"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    env_file = os.environ.get(ENV_FILE_VAR)
    return Settings(_env_file=env_file) if env_file else Settings()
