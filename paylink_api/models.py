"""
Pydantic models for API requests and responses.

Wire names are camelCase; Python attributes are snake_case.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .db import Link, TransactionRecord, format_amount
from .fees import FeeBreakdown


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Create Link
# ============================================================================

class CreateLinkRequest(ApiModel):
    """Request to create a payment link."""

    amount: Decimal = Field(..., description="Gross amount the link pays out before fees")
    asset_tag: str = Field(..., alias="assetTag", description="Asset class (SOL/USDC/USDT)")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"examples": [{"amount": "0.25", "assetTag": "SOL"}]},
    )


class CreateLinkResponse(ApiModel):
    """Response containing the new link id."""

    success: bool = Field(True, description="Whether the link was created")
    link_id: str = Field(..., alias="linkId", description="Opaque link identifier")
    amount: str = Field(..., description="Gross amount")
    asset_tag: str = Field(..., alias="assetTag", description="Asset class")
    state: str = Field(..., description="Link state (CREATED)")


# ============================================================================
# Deposit
# ============================================================================

class DepositRequest(ApiModel):
    """Attach an external deposit reference to a link."""

    external_deposit_ref: str = Field(
        ..., alias="externalDepositRef", description="Relay deposit transaction reference"
    )
    from_address: str = Field(..., alias="fromAddress", description="Sender account")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "externalDepositRef": "5TxDepositSignature...",
                    "fromAddress": "0x1234567890abcdef1234567890abcdef12345678",
                }
            ]
        },
    )


class DepositResponse(ApiModel):
    ok: bool = Field(True, description="Deposit recorded (or already recorded with the same ref)")
    link_id: str = Field(..., alias="linkId")
    state: str = Field(..., description="Link state after recording")
    deposit_ref: str = Field(..., alias="depositRef")


# ============================================================================
# Claim
# ============================================================================

class FeeBreakdownModel(ApiModel):
    gross: str
    net: str
    base_fee: str = Field(..., alias="baseFee")
    percentage_fee: str = Field(..., alias="percentageFee")
    total_fee: str = Field(..., alias="totalFee")

    @classmethod
    def from_breakdown(cls, fees: FeeBreakdown) -> "FeeBreakdownModel":
        return cls(
            gross=format_amount(fees.gross),
            net=format_amount(fees.net),
            base_fee=format_amount(fees.base_fee),
            percentage_fee=format_amount(fees.percentage_fee),
            total_fee=format_amount(fees.total_fee),
        )


class ClaimRequest(ApiModel):
    """Claim a deposited link."""

    recipient: str = Field(..., description="Recipient account (signer of authSignature)")
    auth_signature: str = Field(
        ..., alias="authSignature", description="personal_sign signature over the claim message (0x...)"
    )


class ClaimResponse(ApiModel):
    success: bool = Field(True)
    link_id: str = Field(..., alias="linkId")
    recipient: str
    payout_proof: str = Field(..., alias="payoutProof", description="Relay payout reference")
    fees: FeeBreakdownModel


class ClaimMessageResponse(ApiModel):
    """Text the recipient wallet must sign to claim."""

    link_id: str = Field(..., alias="linkId")
    message: str
    fees: Optional[FeeBreakdownModel] = None


# ============================================================================
# Link views
# ============================================================================

class LinkResponse(ApiModel):
    """Read-only link view."""

    id: str
    state: str
    amount: str
    asset_tag: str = Field(..., alias="assetTag")
    claimed_by: Optional[str] = Field(None, alias="claimedBy")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @classmethod
    def from_link(cls, link: Link) -> "LinkResponse":
        return cls(
            id=link.id,
            state=link.state.value,
            amount=format_amount(link.amount),
            asset_tag=link.asset_tag,
            claimed_by=link.claimed_by,
            created_at=link.created_at,
            updated_at=link.updated_at,
        )


class TransactionModel(ApiModel):
    type: str
    status: str
    hash: Optional[str] = None
    amount: str
    asset_tag: str = Field(..., alias="assetTag")
    from_address: Optional[str] = Field(None, alias="fromAddress")
    to_address: Optional[str] = Field(None, alias="toAddress")
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionModel":
        return cls(
            type=record.type,
            status=record.status,
            hash=record.tx_hash,
            amount=format_amount(record.amount),
            asset_tag=record.asset_tag,
            from_address=record.from_address,
            to_address=record.to_address,
            error=record.error,
            created_at=record.created_at,
        )


class LinkStatusResponse(LinkResponse):
    """Detailed link view including fees and audit trail."""

    deposit_proof: Optional[str] = Field(None, alias="depositProof")
    payout_proof: Optional[str] = Field(None, alias="payoutProof")
    has_valid_deposit: bool = Field(False, alias="hasValidDeposit")
    fees: Optional[FeeBreakdownModel] = None
    transactions: list[TransactionModel] = Field(default_factory=list)


class HistoryResponse(ApiModel):
    address: str
    sent: list[LinkResponse]
    received: list[LinkResponse]


# ============================================================================
# Health Check
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    environment: str = Field(..., description="Deployment environment")
    database: bool = Field(..., description="Database connectivity")
    relay: bool = Field(..., description="Relay connectivity")


class OperatorStatusResponse(ApiModel):
    operator_address: str = Field(..., alias="operatorAddress")
    balance: Optional[str] = None
    balance_error: Optional[str] = Field(None, alias="balanceError")
    safety_buffer: str = Field(..., alias="safetyBuffer")
    relay_fee_estimate: str = Field(..., alias="relayFeeEstimate")


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    retryable: bool
    details: dict = Field(default_factory=dict)
