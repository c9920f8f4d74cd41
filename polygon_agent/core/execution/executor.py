"""
Transaction executor for the secondary signing identity.

Signs locally, broadcasts over JSON-RPC and waits for a receipt. Nothing is
retried: a failed on-chain step is reported, never replayed.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from eth_utils import to_checksum_address

from ...config import settings
from ..recovery.errors import InsufficientGas, TransactionFailed
from ..wallet.identity import SigningIdentity
from .models import GasEstimate, PreparedTransaction, TransactionResult, TransactionStatus

logger = logging.getLogger(__name__)

# Polygon validators reject tips below this
MIN_PRIORITY_FEE_WEI = 30_000_000_000


def _is_insufficient_funds(message: str) -> bool:
    return "insufficient funds" in message.lower()


class TransactionExecutor:
    """
    Executes transactions on an EVM chain from a SigningIdentity.

    Responsibilities:
    - Estimate gas and fees
    - Fetch the pending nonce
    - Sign and submit
    - Wait for the receipt
    """

    def __init__(
        self,
        identity: SigningIdentity,
        rpc_url: Optional[str] = None,
        chain_id: int = 137,
        http_client: Optional[httpx.AsyncClient] = None,
        receipt_timeout: Optional[float] = None,
        poll_interval: float = 2.0,
        gas_multiplier: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.identity = identity
        self.rpc_url = rpc_url or settings.polygon_rpc_url
        self.chain_id = chain_id
        self._client = http_client or httpx.AsyncClient(timeout=60.0)
        self.receipt_timeout = receipt_timeout or settings.receipt_timeout_seconds
        self.poll_interval = poll_interval
        self.gas_multiplier = gas_multiplier or settings.gas_multiplier
        self._sleep = sleep or asyncio.sleep

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call to the chain."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": 1,
        }

        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if _is_insufficient_funds(message):
                # The node's wording is surfaced as-is
                raise InsufficientGas(message, address=self.identity.address, chain_id=self.chain_id)
            raise TransactionFailed(f"RPC error ({method}): {message}", chain_id=self.chain_id)

        return result.get("result")

    async def estimate_gas(self, tx: PreparedTransaction) -> GasEstimate:
        """
        Estimate gas for a transaction.

        Args:
            tx: The prepared transaction

        Returns:
            GasEstimate with limit and EIP-1559 fees
        """
        gas_limit_hex = await self._rpc_call("eth_estimateGas", [tx.to_call()])
        gas_limit = int(int(gas_limit_hex, 16) * self.gas_multiplier)

        fee_history = await self._rpc_call("eth_feeHistory", [1, "latest", [50]])
        base_fee = int(fee_history["baseFeePerGas"][-1], 16)
        reward = fee_history.get("reward") or []
        priority_fee = int(reward[0][0], 16) if reward and reward[0] else 0
        priority_fee = max(priority_fee, MIN_PRIORITY_FEE_WEI)

        return GasEstimate(
            gas_limit=gas_limit,
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def send(self, tx: PreparedTransaction) -> TransactionResult:
        """
        Sign, submit and confirm one transaction.

        Raises:
            InsufficientGas: the identity cannot pay for gas
            TransactionFailed: rejected by the node, reverted, or unconfirmed in time
        """
        gas = await self.estimate_gas(tx)
        nonce_hex = await self._rpc_call("eth_getTransactionCount", [self.identity.address, "pending"])

        signed = self.identity.sign_transaction({
            "type": 2,
            "chainId": self.chain_id,
            "nonce": int(nonce_hex, 16),
            "to": to_checksum_address(tx.to_address),
            "value": tx.value,
            "data": tx.data,
            "gas": gas.gas_limit,
            "maxFeePerGas": gas.max_fee_per_gas,
            "maxPriorityFeePerGas": gas.max_priority_fee_per_gas,
        })

        tx_hash = await self._submit_raw_transaction(signed)
        logger.info(f"{tx.description}: submitted {tx_hash}")
        return await self._monitor_transaction(tx, tx_hash)

    async def _submit_raw_transaction(self, signed_tx: str) -> str:
        """Submit a signed transaction to the network."""
        return await self._rpc_call("eth_sendRawTransaction", [signed_tx])

    async def _monitor_transaction(self, tx: PreparedTransaction, tx_hash: str) -> TransactionResult:
        result = TransactionResult(
            tx_id=tx.tx_id,
            tx_hash=tx_hash,
            chain_id=self.chain_id,
            status=TransactionStatus.SUBMITTED,
        )
        deadline = time.monotonic() + self.receipt_timeout

        while time.monotonic() < deadline:
            receipt = await self._rpc_call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                result.block_number = int(receipt["blockNumber"], 16)
                result.gas_used = int(receipt.get("gasUsed", "0x0"), 16)

                # 0x1 = success, 0x0 = revert
                if int(receipt.get("status", "0x1"), 16) == 0:
                    result.status = TransactionStatus.REVERTED
                    raise TransactionFailed(
                        f"{tx.description}: transaction reverted",
                        tx_hash=tx_hash,
                        chain_id=self.chain_id,
                    )

                result.status = TransactionStatus.CONFIRMED
                logger.info(f"Transaction confirmed: {tx_hash} (block {result.block_number})")
                return result

            await self._sleep(self.poll_interval)

        result.status = TransactionStatus.TIMEOUT
        raise TransactionFailed(
            f"{tx.description}: no receipt after {self.receipt_timeout}s",
            tx_hash=tx_hash,
            chain_id=self.chain_id,
        )

    async def close(self) -> None:
        await self._client.aclose()
