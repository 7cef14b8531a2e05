"""
Claim authorisation signatures.

Recipients sign a canonical text message with their wallet (EIP-191
``personal_sign``). The message binds the link id, the gross amount and the
intent, so a signature cannot be replayed against another link or amount.
"""

from decimal import Decimal
from typing import Optional, Union

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .db import format_amount

logger = structlog.get_logger()

CLAIM_INTENT = "claim"
SIGNATURE_LENGTH = 65


def build_claim_message(link_id: str, amount: Union[Decimal, str], intent: str = CLAIM_INTENT) -> str:
    # IMPORTANT: this string must remain stable, wallets sign it verbatim.
    return (
        "Paylink Authorization\n"
        f"Link ID: {link_id}\n"
        f"Amount: {format_amount(Decimal(str(amount)))}\n"
        f"Intent: {intent}\n"
    )


def normalize_address(value: str) -> str:
    """Checksummed form of a well-formed account address; anything else unchanged."""
    if Web3.is_address(value):
        return Web3.to_checksum_address(value)
    return value


def _decode_signature(signature: Union[str, bytes]) -> Optional[bytes]:
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        value = signature.strip()
        if value[:2] in ("0x", "0X"):
            value = value[2:]
        try:
            raw = bytes.fromhex(value)
        except ValueError:
            return None
    if len(raw) != SIGNATURE_LENGTH:
        return None
    return raw


class SignatureVerifier:
    """
    Stateless check that a message was signed by a given account.

    Fails closed: malformed keys, signatures of the wrong length or encoding,
    and unrecoverable signatures are all reported as invalid.
    """

    def verify(self, public_key: str, message: str, signature: Union[str, bytes]) -> bool:
        if not public_key or not Web3.is_address(public_key):
            return False

        raw = _decode_signature(signature)
        if raw is None:
            return False

        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
        except Exception as e:
            logger.debug("signature_recovery_failed", error=str(e))
            return False

        return recovered.lower() == public_key.lower()

    def verify_claim(
        self,
        public_key: str,
        link_id: str,
        amount: Decimal,
        signature: Union[str, bytes],
        intent: str = CLAIM_INTENT,
    ) -> bool:
        """Verify a signature over the canonical claim message."""
        return self.verify(public_key, build_claim_message(link_id, amount, intent), signature)
