"""
Transactions sent from the signing identity or batched through the custodial wallet.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class TransactionType(str, Enum):
    TRANSFER = "transfer"
    APPROVE = "approve"
    SET_APPROVAL_FOR_ALL = "set_approval_for_all"
    SPLIT = "split"


class TransactionStatus(str, Enum):
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMEOUT = "timeout"


@dataclass
class GasEstimate:
    """EIP-1559 fee parameters plus the estimated gas limit."""
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass
class PreparedTransaction:
    """
    Encoded call from one address to one contract.

    The same object feeds both paths: `to_call()` for JSON-RPC estimation from
    the signing identity, `to_service_call()` for a custodial wallet batch.
    """
    tx_id: str
    tx_type: TransactionType
    chain_id: int
    from_address: str
    to_address: str
    data: str  # 0x-prefixed calldata
    value: int = 0
    description: str = ""

    def to_call(self) -> Dict[str, Any]:
        call = {"from": self.from_address, "to": self.to_address, "data": self.data}
        if self.value:
            call["value"] = hex(self.value)
        return call

    def to_service_call(self) -> Dict[str, str]:
        return {"to": self.to_address, "value": str(self.value), "data": self.data}


@dataclass
class TransactionResult:
    """Outcome of a transaction sent by the signing identity."""
    tx_id: str
    tx_hash: Optional[str] = None
    status: TransactionStatus = TransactionStatus.SUBMITTED
    chain_id: int = 137
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
