"""
Wallet session data models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..recovery.errors import InvalidConstraints
from .handshake import EphemeralHandshake

# Registry contracts the approver always whitelists for agent sessions
REGISTRY_CONTRACTS = [
    "0x8004A169FB4a3325136EB29fA0ceB6D2e539a432",
    "0x8004BAa17C55a88189AE136b182e5fdA19dE9b63",
]

DEFAULT_USDC_LIMIT = "50"


@dataclass
class SessionConstraints:
    """Spending limits and contract whitelist requested for a session."""

    native_limit: Optional[str] = None
    usdc_limit: Optional[str] = DEFAULT_USDC_LIMIT
    usdt_limit: Optional[str] = None
    token_limits: List[str] = field(default_factory=list)  # "SYMBOL:amount"
    contracts: List[str] = field(default_factory=list)
    usdc_to: Optional[str] = None
    usdc_amount: Optional[str] = None

    def query_params(self) -> List[Tuple[str, str]]:
        """Approval-link parameters, in the order the approver documents them."""
        params: List[Tuple[str, str]] = []

        if self.usdc_to or self.usdc_amount:
            if not (self.usdc_to and self.usdc_amount):
                raise InvalidConstraints("A one-off USDC transfer needs both a recipient and an amount")
            params += [("erc20", "usdc"), ("erc20To", self.usdc_to), ("erc20Amount", self.usdc_amount)]

        if self.native_limit:
            params.append(("nativeLimit", self.native_limit))
        params.append(("usdcLimit", self.usdc_limit or DEFAULT_USDC_LIMIT))
        if self.usdt_limit:
            params.append(("usdtLimit", self.usdt_limit))

        token_limits = [t.strip() for t in self.token_limits if t and t.strip()]
        if token_limits:
            params.append(("tokenLimits", ",".join(token_limits)))

        params.append(("contracts", ",".join(self.whitelisted_contracts())))
        return params

    def whitelisted_contracts(self) -> List[str]:
        """Registry contracts first, then caller contracts, de-duplicated."""
        seen = set()
        result = []
        for address in [*REGISTRY_CONTRACTS, *(c.strip() for c in self.contracts if c and c.strip())]:
            key = address.lower()
            if key in seen:
                continue
            seen.add(key)
            result.append(address)
        return result


@dataclass
class PendingRequest:
    """An approval request awaiting the approver's sealed payload."""

    request_id: str
    wallet_name: str
    chain_name: str
    created_at: datetime
    handshake: EphemeralHandshake
    access_token: Optional[str] = None

    @property
    def expires_at(self) -> datetime:
        return self.handshake.expires_at

    @property
    def public_key(self) -> str:
        return self.handshake.public_key

    def to_record(self) -> Dict[str, Any]:
        return {
            "rid": self.request_id,
            "walletName": self.wallet_name,
            "chain": self.chain_name,
            "createdAt": self.created_at.isoformat(),
            "projectAccessKey": self.access_token,
            "handshake": self.handshake.to_record(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PendingRequest":
        return cls(
            request_id=record["rid"],
            wallet_name=record["walletName"],
            chain_name=record["chain"],
            created_at=datetime.fromisoformat(record["createdAt"]),
            handshake=EphemeralHandshake.from_record(record["handshake"]),
            access_token=record.get("projectAccessKey"),
        )


@dataclass
class WalletSession:
    """
    An approved custodial session for one wallet name.

    The explicit session is the primary signing material used for transfers
    and contract calls; the implicit session (key, attestation, identity
    signature) is kept verbatim for the custodial service.
    """

    wallet_name: str
    wallet_address: str
    chain_id: int
    chain_name: str
    explicit_session: Dict[str, Any]
    implicit_session: Dict[str, Any]
    access_token: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def session_key(self) -> str:
        return self.explicit_session["pk"]

    @property
    def deadline(self) -> Optional[datetime]:
        """Expiry the approver put on the explicit session, if any."""
        config = self.explicit_session.get("config") or {}
        value = config.get("deadline")
        if value in (None, "", 0, "0"):
            return None
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            return None
        # Some approvers send milliseconds
        if seconds > 10**12:
            seconds //= 1000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        deadline = self.deadline
        return deadline is not None and (now or datetime.now(timezone.utc)) >= deadline

    def to_record(self) -> Dict[str, Any]:
        return {
            "walletName": self.wallet_name,
            "walletAddress": self.wallet_address,
            "chainId": self.chain_id,
            "chain": self.chain_name,
            "explicitSession": self.explicit_session,
            "implicitSession": self.implicit_session,
            "projectAccessKey": self.access_token,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "WalletSession":
        return cls(
            wallet_name=record["walletName"],
            wallet_address=record["walletAddress"],
            chain_id=int(record["chainId"]),
            chain_name=record["chain"],
            explicit_session=record["explicitSession"],
            implicit_session=record["implicitSession"],
            access_token=record.get("projectAccessKey"),
            created_at=datetime.fromisoformat(record["createdAt"]),
        )

    def summary(self) -> Dict[str, Any]:
        """Public fields only; safe to print."""
        return {
            "walletName": self.wallet_name,
            "walletAddress": self.wallet_address,
            "chainId": self.chain_id,
            "chain": self.chain_name,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class ApprovalRequest:
    """What the caller gets back from creating a request."""

    request_id: str
    approval_url: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rid": self.request_id,
            "url": self.approval_url,
            "expiresAt": self.expires_at.isoformat(),
        }
