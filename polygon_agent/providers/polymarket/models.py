"""
Polymarket Data Models

Wire-level models for markets, prices, positions, open orders and API
credentials.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class OrderSide(str, Enum):
    """Order side (buy or sell)."""

    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    """Order type."""

    GTC = "GTC"  # Good Till Cancelled
    FOK = "FOK"  # Fill Or Kill


class Outcome(BaseModel):
    """A market outcome (e.g., 'Yes' or 'No')."""

    token_id: str = Field(..., alias="tokenId", description="Token ID for this outcome")
    outcome: str = Field(..., description="Outcome name (e.g., 'Yes', 'No')")
    price: Optional[Decimal] = Field(None, description="Last implied price (0.00 to 1.00)")

    class Config:
        populate_by_name = True


class Market(BaseModel):
    """A Polymarket binary market."""

    id: Optional[str] = Field(None, description="Gamma market id")
    condition_id: str = Field(..., alias="conditionId", description="Market condition ID")
    question: str = Field("", description="Market question")
    outcomes: List[str] = Field(default_factory=lambda: ["Yes", "No"], description="Outcome names")
    tokens: List[Outcome] = Field(default_factory=list, description="Token details per outcome")
    volume_24h: Decimal = Field(Decimal("0"), alias="volume24hr", description="24h volume")
    neg_risk: bool = Field(False, alias="negRisk", description="Combinatorial (neg-risk) market")
    active: bool = Field(True)
    closed: bool = Field(False)
    end_date: Optional[datetime] = Field(None, alias="endDate")

    class Config:
        populate_by_name = True

    @property
    def yes(self) -> Optional[Outcome]:
        return self.tokens[0] if len(self.tokens) > 0 else None

    @property
    def no(self) -> Optional[Outcome]:
        return self.tokens[1] if len(self.tokens) > 1 else None

    def summary(self) -> Dict[str, Any]:
        yes, no = self.yes, self.no
        return {
            "id": self.id,
            "conditionId": self.condition_id,
            "question": self.question,
            "yesTokenId": yes.token_id if yes else None,
            "noTokenId": no.token_id if no else None,
            "yesPrice": str(yes.price) if yes and yes.price is not None else None,
            "noPrice": str(no.price) if no and no.price is not None else None,
            "outcomes": self.outcomes,
            "volume24hr": str(self.volume_24h),
            "negRisk": self.neg_risk,
            "endDate": self.end_date.isoformat() if self.end_date else None,
        }


class Position(BaseModel):
    """A user's holding in one outcome token."""

    condition_id: str = Field("", alias="conditionId")
    token_id: str = Field("", alias="asset")
    outcome: str = Field("")
    title: str = Field("")
    size: Decimal = Field(Decimal("0"))
    avg_price: Decimal = Field(Decimal("0"), alias="avgPrice")
    current_value: Decimal = Field(Decimal("0"), alias="currentValue")
    cash_pnl: Decimal = Field(Decimal("0"), alias="cashPnl")

    class Config:
        populate_by_name = True


class OpenOrder(BaseModel):
    """A resting order on the CLOB."""

    id: str
    status: str = Field("")
    market: str = Field("", description="Condition ID")
    asset_id: str = Field("", description="Token ID")
    side: str = Field("")
    price: Decimal = Field(Decimal("0"))
    original_size: Decimal = Field(Decimal("0"))
    size_matched: Decimal = Field(Decimal("0"))
    order_type: str = Field("")
    outcome: str = Field("")


@dataclass(frozen=True)
class VenueCredential:
    """Per-identity CLOB API credential. Held in memory for one invocation only."""

    api_key: str
    api_secret: str
    passphrase: str
    signer_address: str

    def __repr__(self) -> str:
        return f"VenueCredential(api_key={self.api_key!r}, signer_address={self.signer_address!r})"


@dataclass(frozen=True)
class CredentialIssued:
    """The venue issued a fresh credential."""

    credential: VenueCredential


@dataclass(frozen=True)
class CredentialAlreadyExists:
    """The venue refused issuance because a credential exists for this identity and nonce."""

    detail: str = ""


CredentialIssuance = Union[CredentialIssued, CredentialAlreadyExists]
