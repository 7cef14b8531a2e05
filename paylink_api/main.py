"""
Paylink API - HTTP surface for payment links.

Provides REST endpoints for:
- Creating links (POST /links)
- Recording deposits (POST /links/{id}/deposit)
- Claiming links (POST /links/{id}/claim)
- Reading links (GET /links/{id}, /links/{id}/status, /links/{id}/claim-message)
- Sender/recipient history (GET /history/{address})
- Health checks (GET /health, GET /health/operator)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth import verify_api_token
from .config import Settings, get_settings
from .errors import FeeExceedsAmountError, PaylinkError
from .models import (
    ClaimMessageResponse,
    ClaimRequest,
    ClaimResponse,
    CreateLinkRequest,
    CreateLinkResponse,
    DepositRequest,
    DepositResponse,
    ErrorResponse,
    FeeBreakdownModel,
    HealthResponse,
    HistoryResponse,
    LinkResponse,
    LinkStatusResponse,
    OperatorStatusResponse,
    TransactionModel,
)
from .services import Services, build_services
from .signer import build_claim_message, normalize_address

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build services on startup (unless injected) and close them on shutdown."""
    settings = get_settings()
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(settings)

    logger.info(
        "API started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        environment=settings.environment,
        relay=settings.relay_url,
    )

    yield

    if owned:
        await app.state.services.close()
        app.state.services = None

    logger.info("API stopped")


app = FastAPI(
    title="Paylink API",
    description="One-shot payment links with exactly-once payout",
    version=__version__,
    lifespan=lifespan,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)


_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaylinkError)
async def paylink_error_handler(request: Request, exc: PaylinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health", response_model=HealthResponse)
async def health_check(
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Check API health and connectivity.

    Returns service status and connectivity to the database and relay.
    """
    database_ok = services.store.check_connectivity()

    relay_ok = False
    check = getattr(services.relay, "check_connectivity", None)
    if check is not None:
        relay_ok = await check()

    return HealthResponse(
        status="ok" if (database_ok and relay_ok) else "degraded",
        version=__version__,
        environment=settings.environment,
        database=database_ok,
        relay=relay_ok,
    )


@app.get(
    "/health/operator",
    response_model=OperatorStatusResponse,
    dependencies=[Depends(verify_api_token)],
)
async def operator_status(services: Services = Depends(get_services)) -> OperatorStatusResponse:
    """Operator account balance and the margins the guard enforces."""
    balance = None
    balance_error = None
    try:
        balance = format(await services.guard.read_balance(), "f")
    except PaylinkError as e:
        balance_error = e.message

    return OperatorStatusResponse(
        operator_address=services.relayer.operator_address,
        balance=balance,
        balance_error=balance_error,
        safety_buffer=format(services.relayer.safety_buffer, "f"),
        relay_fee_estimate=format(services.relayer.relay_fee_estimate, "f"),
    )


# ============================================================================
# Links
# ============================================================================


@app.post("/links", response_model=CreateLinkResponse, status_code=201)
def create_link(
    request: CreateLinkRequest,
    services: Services = Depends(get_services),
) -> CreateLinkResponse:
    """Create a payment link in state CREATED."""
    link = services.store.create(request.amount, request.asset_tag)
    return CreateLinkResponse(
        link_id=link.id,
        amount=LinkResponse.from_link(link).amount,
        asset_tag=link.asset_tag,
        state=link.state.value,
    )


@app.get(
    "/links",
    response_model=list[LinkResponse],
    dependencies=[Depends(verify_api_token)],
)
def list_links(
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> list[LinkResponse]:
    """List links, newest first (operator only)."""
    return [LinkResponse.from_link(link) for link in services.store.list_links(limit)]


@app.get("/links/{link_id}", response_model=LinkResponse)
def get_link(link_id: str, services: Services = Depends(get_services)) -> LinkResponse:
    """Read-only link view."""
    return LinkResponse.from_link(services.store.get(link_id))


@app.get("/links/{link_id}/status", response_model=LinkStatusResponse)
def get_link_status(link_id: str, services: Services = Depends(get_services)) -> LinkStatusResponse:
    """Link view with fee breakdown, deposit/payout references and audit trail."""
    link = services.store.get(link_id)

    try:
        fees = FeeBreakdownModel.from_breakdown(services.fees.compute_net(link.amount))
    except FeeExceedsAmountError:
        fees = None

    return LinkStatusResponse(
        **LinkResponse.from_link(link).model_dump(),
        deposit_proof=link.deposit_proof,
        payout_proof=link.payout_proof,
        has_valid_deposit=bool(link.deposit_proof),
        fees=fees,
        transactions=[
            TransactionModel.from_record(record)
            for record in services.store.list_transactions(link.id)
        ],
    )


@app.get("/links/{link_id}/claim-message", response_model=ClaimMessageResponse)
def get_claim_message(link_id: str, services: Services = Depends(get_services)) -> ClaimMessageResponse:
    """
    Message the recipient wallet must sign (personal_sign) to claim this link.
    """
    link = services.store.get(link_id)

    try:
        fees = FeeBreakdownModel.from_breakdown(services.fees.compute_net(link.amount))
    except FeeExceedsAmountError:
        fees = None

    return ClaimMessageResponse(
        link_id=link.id,
        message=build_claim_message(link.id, link.amount),
        fees=fees,
    )


@app.post("/links/{link_id}/deposit", response_model=DepositResponse)
def record_deposit(
    link_id: str,
    request: DepositRequest,
    services: Services = Depends(get_services),
) -> DepositResponse:
    """
    Record the relay deposit that funds this link.

    Idempotent: re-sending the same externalDepositRef succeeds.
    """
    link = services.deposits.attach(link_id, request.external_deposit_ref, request.from_address)
    return DepositResponse(
        link_id=link.id,
        state=link.state.value,
        deposit_ref=link.deposit_proof or request.external_deposit_ref,
    )


@app.post("/links/{link_id}/claim", response_model=ClaimResponse)
async def claim_link(
    link_id: str,
    request: ClaimRequest,
    services: Services = Depends(get_services),
) -> ClaimResponse:
    """
    Claim a deposited link:
    1) Verify the recipient's signature over the claim message
    2) Reserve the link (DEPOSITED -> CLAIMING)
    3) Re-check the operator balance
    4) Pay out through the relay
    5) Finalize (CLAIMING -> CLAIMED), or roll back on failure
    """
    receipt = await services.claims.claim(link_id, request.recipient, request.auth_signature)
    return ClaimResponse(
        link_id=receipt.link_id,
        recipient=receipt.recipient,
        payout_proof=receipt.payout_proof,
        fees=FeeBreakdownModel.from_breakdown(receipt.fees),
    )


# ============================================================================
# History
# ============================================================================


@app.get("/history/{address}", response_model=HistoryResponse)
def get_history(address: str, services: Services = Depends(get_services)) -> HistoryResponse:
    """Links funded by and paid out to an address."""
    normalized = normalize_address(address)
    return HistoryResponse(
        address=address,
        sent=[LinkResponse.from_link(link) for link in services.store.list_sent(normalized)],
        received=[LinkResponse.from_link(link) for link in services.store.list_received(normalized)],
    )


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "paylink_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
