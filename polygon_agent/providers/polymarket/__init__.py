"""
Polymarket venue client.
"""

from .client import PolymarketClient
from .models import (
    CredentialAlreadyExists,
    CredentialIssued,
    Market,
    OpenOrder,
    OrderSide,
    OrderType,
    Outcome,
    Position,
    VenueCredential,
)

__all__ = [
    "CredentialAlreadyExists",
    "CredentialIssued",
    "Market",
    "OpenOrder",
    "OrderSide",
    "OrderType",
    "Outcome",
    "PolymarketClient",
    "Position",
    "VenueCredential",
]
