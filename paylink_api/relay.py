"""
Client for the external shielded-pool relay.

The rest of the service only depends on the narrow `Relay` capability
(`deposit`, `withdraw`, `get_balance`); proofs, UTXOs and encryption stay
inside the relay.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Protocol

import httpx
import structlog

from .db import format_amount
from .errors import PermanentRelayError, RelayTimeoutError, TransientRelayError

logger = structlog.get_logger()


class Relay(Protocol):
    """Capability interface consumed by the claim engine."""

    async def deposit(self, amount: Decimal) -> str: ...

    async def withdraw(self, amount: Decimal, recipient: str) -> str: ...

    async def get_balance(self) -> Decimal: ...


@dataclass
class RelayClientConfig:
    """Relay HTTP connection settings."""

    url: str = "http://localhost:8787"
    api_key: Optional[str] = None
    operator_address: str = ""
    timeout: float = 60.0


class HttpRelayClient:
    """
    Async relay client over JSON/HTTP.

    Failures are classified for the caller:
    - timeouts -> RelayTimeoutError
    - connection errors, 429 and 5xx -> TransientRelayError
    - other 4xx and malformed bodies -> PermanentRelayError
    """

    def __init__(self, config: RelayClientConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.config.api_key:
                headers["X-API-Key"] = self.config.api_key
            self._client = httpx.AsyncClient(
                base_url=self.config.url,
                headers=headers,
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RelayTimeoutError(f"Relay {path} timed out", path=path) from e
        except httpx.TransportError as e:
            raise TransientRelayError(f"Relay unreachable: {e}", path=path) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientRelayError(
                f"Relay {path} failed with HTTP {response.status_code}",
                path=path,
                status=response.status_code,
                body=response.text[:500],
            )
        if response.status_code >= 400:
            raise PermanentRelayError(
                f"Relay rejected {path}: {_error_text(response)}",
                path=path,
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise PermanentRelayError(f"Relay {path} returned invalid JSON", path=path) from e
        if not isinstance(payload, dict):
            raise PermanentRelayError(f"Relay {path} returned unexpected payload", path=path)
        return payload

    async def deposit(self, amount: Decimal, asset_tag: Optional[str] = None) -> str:
        """Deposit into the shielded pool. Returns the external deposit reference."""
        body: dict[str, Any] = {"amount": format_amount(amount)}
        if asset_tag:
            body["assetTag"] = asset_tag
        payload = await self._request("POST", "/deposit", json=body)
        ref = _require_str(payload, "tx", "/deposit")
        logger.info("relay_deposit_sent", amount=format_amount(amount), tx=ref)
        return ref

    async def withdraw(self, amount: Decimal, recipient: str) -> str:
        """Pay `amount` out of the pool to `recipient`. Returns the payout proof."""
        payload = await self._request(
            "POST",
            "/withdraw",
            json={"amount": format_amount(amount), "recipient": recipient},
        )
        proof = _require_str(payload, "tx", "/withdraw")
        logger.info("relay_withdraw_sent", amount=format_amount(amount), recipient=recipient, tx=proof)
        return proof

    async def get_balance(self) -> Decimal:
        """Current spendable balance of the operator account."""
        payload = await self._request(
            "GET", "/balance", params={"address": self.config.operator_address}
        )
        try:
            return Decimal(str(payload["balance"]))
        except (KeyError, InvalidOperation) as e:
            raise PermanentRelayError("Relay /balance returned no balance", path="/balance") from e

    async def check_connectivity(self) -> bool:
        try:
            await self.get_balance()
            return True
        except Exception as e:
            logger.warning("relay_unreachable", error=str(e))
            return False


def _require_str(payload: dict[str, Any], key: str, path: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise PermanentRelayError(f"Relay {path} response missing '{key}'", path=path)
    return value


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)
