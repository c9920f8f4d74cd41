"""
EIP-712 order construction for the CTF exchange.
"""

import json
import secrets
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from ...providers.polymarket.models import OrderSide, OrderType
from ..wallet.identity import SigningIdentity
from .contracts import POLYGON_CHAIN_ID, USDC_DECIMALS

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ORDER_DOMAIN_NAME = "Polymarket CTF Exchange"
ORDER_TYPES = {
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "signer", "type": "address"},
        {"name": "taker", "type": "address"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "makerAmount", "type": "uint256"},
        {"name": "takerAmount", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "feeRateBps", "type": "uint256"},
        {"name": "side", "type": "uint8"},
        {"name": "signatureType", "type": "uint8"},
    ],
}

SIDE_CODES = {OrderSide.BUY: 0, OrderSide.SELL: 1}
SIGNATURE_TYPE_EOA = 0


def to_base_units(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    """Scale a human amount to integer base units, rounding half up."""
    return int((Decimal(amount) * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SignedOrder:
    salt: int
    maker: str
    signer: str
    taker: str
    token_id: str
    maker_amount: int
    taker_amount: int
    expiration: int
    nonce: int
    fee_rate_bps: int
    side: OrderSide
    signature_type: int
    signature: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "salt": self.salt,
            "maker": self.maker,
            "signer": self.signer,
            "taker": self.taker,
            "tokenId": self.token_id,
            "makerAmount": str(self.maker_amount),
            "takerAmount": str(self.taker_amount),
            "expiration": str(self.expiration),
            "nonce": str(self.nonce),
            "feeRateBps": str(self.fee_rate_bps),
            "side": self.side.value,
            "signatureType": self.signature_type,
            "signature": self.signature,
        }


def build_sell_order(
    identity: SigningIdentity,
    token_id: str,
    size_units: int,
    price: Decimal,
    exchange: str,
    salt: Optional[int] = None,
    fee_rate_bps: int = 0,
) -> SignedOrder:
    """
    Sign a SELL of `size_units` outcome-token base units at `price`.

    makerAmount is what the maker gives (outcome tokens), takerAmount what it
    receives (USDC.e base units).
    """
    if size_units <= 0:
        raise ValueError("Order size must be positive")
    if not Decimal("0") < price < Decimal("1"):
        raise ValueError(f"Price must be between 0 and 1, got {price}")

    salt = salt if salt is not None else secrets.randbelow(2**32)
    taker_amount = int((Decimal(size_units) * price).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    message = {
        "salt": salt,
        "maker": identity.address,
        "signer": identity.address,
        "taker": ZERO_ADDRESS,
        "tokenId": int(token_id),
        "makerAmount": size_units,
        "takerAmount": taker_amount,
        "expiration": 0,
        "nonce": 0,
        "feeRateBps": fee_rate_bps,
        "side": SIDE_CODES[OrderSide.SELL],
        "signatureType": SIGNATURE_TYPE_EOA,
    }
    domain = {
        "name": ORDER_DOMAIN_NAME,
        "version": "1",
        "chainId": POLYGON_CHAIN_ID,
        "verifyingContract": exchange,
    }
    signature = identity.sign_typed_data(domain, ORDER_TYPES, message)

    return SignedOrder(
        salt=salt,
        maker=identity.address,
        signer=identity.address,
        taker=ZERO_ADDRESS,
        token_id=str(token_id),
        maker_amount=size_units,
        taker_amount=taker_amount,
        expiration=0,
        nonce=0,
        fee_rate_bps=fee_rate_bps,
        side=OrderSide.SELL,
        signature_type=SIGNATURE_TYPE_EOA,
        signature=signature,
    )


def order_request_body(order: SignedOrder, owner: str, order_type: OrderType) -> str:
    """Exact JSON text posted to /order; the L2 signature must cover this string."""
    return json.dumps(
        {"order": order.to_payload(), "owner": owner, "orderType": order_type.value},
        separators=(",", ":"),
    )
