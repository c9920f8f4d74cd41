"""
Transaction building and execution.
"""

from .custodial import CustodialWalletClient
from .executor import TransactionExecutor
from .models import GasEstimate, PreparedTransaction, TransactionResult, TransactionStatus, TransactionType
from .tx_builder import MAX_UINT256, TransactionBuilder

__all__ = [
    "CustodialWalletClient",
    "GasEstimate",
    "MAX_UINT256",
    "PreparedTransaction",
    "TransactionBuilder",
    "TransactionExecutor",
    "TransactionResult",
    "TransactionStatus",
    "TransactionType",
]
