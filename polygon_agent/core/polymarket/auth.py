"""
Venue authentication.

Level 1: an EIP-712 ClobAuth signature from the signing identity proves
control of the address and obtains an API credential.
Level 2: every authenticated request carries an HMAC-SHA256 over
timestamp + method + path + body keyed by the credential secret.
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Callable, Dict, Optional

from ...providers.polymarket.client import PolymarketClient
from ...providers.polymarket.models import CredentialIssued, VenueCredential
from ..wallet.identity import SigningIdentity
from .contracts import POLYGON_CHAIN_ID

logger = logging.getLogger(__name__)

CLOB_AUTH_DOMAIN = {"name": "ClobAuthDomain", "version": "1", "chainId": POLYGON_CHAIN_ID}
CLOB_AUTH_TYPES = {
    "ClobAuth": [
        {"name": "address", "type": "address"},
        {"name": "timestamp", "type": "string"},
        {"name": "nonce", "type": "uint256"},
        {"name": "message", "type": "string"},
    ],
}
CLOB_AUTH_MESSAGE = "This message attests that I control the given wallet"


def build_hmac_signature(secret: str, timestamp: str, method: str, path: str, body: Optional[str] = None) -> str:
    """
    HMAC-SHA256 request signature.

    The secret is URL-safe base64; the digest is returned URL-safe base64
    with padding kept. Method is used as given.
    """
    key = base64.urlsafe_b64decode(secret + "=" * (-len(secret) % 4))
    message = f"{timestamp}{method}{path}{body or ''}"
    digest = hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


class VenueAuthSigner:
    """
    Derives venue credentials and signs authenticated requests.

    Credentials are re-derived on every invocation and never cached or
    persisted; the venue returns the same credential for the same
    identity and nonce.
    """

    def __init__(self, client: PolymarketClient, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock

    def _timestamp(self) -> str:
        return str(int(self.clock()))

    def l1_headers(
        self,
        identity: SigningIdentity,
        nonce: int = 0,
        timestamp: Optional[str] = None,
    ) -> Dict[str, str]:
        timestamp = timestamp or self._timestamp()
        signature = identity.sign_typed_data(
            CLOB_AUTH_DOMAIN,
            CLOB_AUTH_TYPES,
            {
                "address": identity.address,
                "timestamp": timestamp,
                "nonce": nonce,
                "message": CLOB_AUTH_MESSAGE,
            },
        )
        return {
            "POLY_ADDRESS": identity.address,
            "POLY_SIGNATURE": signature,
            "POLY_TIMESTAMP": timestamp,
            "POLY_NONCE": str(nonce),
        }

    async def derive_credential(self, identity: SigningIdentity, nonce: int = 0) -> VenueCredential:
        """
        Obtain the API credential for an identity.

        Issuance is attempted first; when the venue answers that a credential
        already exists, the existing one is derived with the same headers.

        Raises:
            VenueAuthFailure: both paths rejected
        """
        headers = self.l1_headers(identity, nonce)
        issuance = await self.client.create_api_key(headers)

        if isinstance(issuance, CredentialIssued):
            logger.info(f"Issued venue credential for {identity.address}")
            return issuance.credential

        logger.info(f"Venue credential already exists for {identity.address}; deriving")
        return await self.client.derive_api_key(headers)

    def sign_request(
        self,
        credential: VenueCredential,
        method: str,
        path: str,
        body: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Build L2 headers for one request. Recompute per request; the
        timestamp is part of the signed message.
        """
        timestamp = timestamp or self._timestamp()
        return {
            "POLY_ADDRESS": credential.signer_address,
            "POLY_SIGNATURE": build_hmac_signature(credential.api_secret, timestamp, method, path, body),
            "POLY_TIMESTAMP": timestamp,
            "POLY_API_KEY": credential.api_key,
            "POLY_PASSPHRASE": credential.passphrase,
        }
