"""
Polymarket trading on top of a custodial wallet session.
"""

from .auth import VenueAuthSigner, build_hmac_signature
from .models import (
    OrderKind,
    StepFailure,
    StepLedger,
    StepSuccess,
    TradeOutcome,
    TradePlan,
    TradeResult,
    TradeStatus,
    TradeStep,
)
from .orchestrator import TradeOrchestrator, market_sell_price

__all__ = [
    "OrderKind",
    "StepFailure",
    "StepLedger",
    "StepSuccess",
    "TradeOrchestrator",
    "TradeOutcome",
    "TradePlan",
    "TradeResult",
    "TradeStatus",
    "TradeStep",
    "VenueAuthSigner",
    "build_hmac_signature",
    "market_sell_price",
]
