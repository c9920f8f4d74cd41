"""
Client for the external custodial signing service.

The primary smart wallet cannot sign locally; its transactions are sent to
the service together with the approved session material.
"""

import logging
from typing import List, Optional

import httpx

from ...config import settings
from ..recovery.errors import InsufficientGas, MissingSession, TransactionFailed
from ..wallet.models import WalletSession
from .models import PreparedTransaction

logger = logging.getLogger(__name__)


class CustodialWalletClient:
    """Submits transactions on behalf of a WalletSession."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.wallet_service_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout or settings.wallet_service_timeout_seconds
        )

    async def send_transactions(
        self,
        session: WalletSession,
        transactions: List[PreparedTransaction],
    ) -> str:
        """
        Submit a batch from the session's wallet.

        Returns:
            Transaction hash reported by the service

        Raises:
            MissingSession: the session's deadline has passed
            InsufficientGas: the service reports the wallet cannot pay fees
            TransactionFailed: any other rejection
        """
        if session.is_expired():
            raise MissingSession(
                session.wallet_name,
                message=f"Session for wallet '{session.wallet_name}' expired; create a new one",
            )

        payload = {
            "walletAddress": session.wallet_address,
            "chainId": session.chain_id,
            "session": {
                "explicit": session.explicit_session,
                "implicit": session.implicit_session,
            },
            "accessKey": session.access_token,
            "transactions": [tx.to_service_call() for tx in transactions],
        }

        try:
            response = await self._client.post(f"{self.base_url}/transactions", json=payload)
        except httpx.HTTPError as e:
            raise TransactionFailed(f"Custodial service unreachable: {e}", chain_id=session.chain_id) from e

        if not response.is_success:
            text = response.text
            if "insufficient funds" in text.lower():
                raise InsufficientGas(text, address=session.wallet_address, chain_id=session.chain_id)
            raise TransactionFailed(
                f"Custodial service rejected transaction: {response.status_code} {text}",
                chain_id=session.chain_id,
            )

        tx_hash = response.json().get("txHash")
        if not tx_hash:
            raise TransactionFailed("Custodial service returned no transaction hash", chain_id=session.chain_id)

        logger.info(f"Custodial transaction from {session.wallet_address}: {tx_hash}")
        return tx_hash

    async def close(self) -> None:
        await self._client.aclose()
