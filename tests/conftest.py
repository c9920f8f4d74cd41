import json

import pytest
from nacl.public import PublicKey, SealedBox

from polygon_agent.core.vault import InMemoryKeyProvider, VaultStore
from polygon_agent.core.wallet.handshake import b64url_decode, b64url_encode

WALLET_ADDRESS = "0x" + "ab" * 20


@pytest.fixture
def store(tmp_path):
    """Store rooted in a temp dir with an in-memory vault key."""
    return VaultStore.open(tmp_path / "state", InMemoryKeyProvider())


@pytest.fixture
def session_payload():
    def _build(chain_id=137, **overrides):
        payload = {
            "walletAddress": WALLET_ADDRESS,
            "chainId": chain_id,
            "explicitSession": {"pk": "0x" + "11" * 32, "config": {"deadline": 0}},
            "implicit": {
                "pk": "0x" + "22" * 32,
                "attestation": {"approvedSigner": "0x" + "33" * 20},
                "identitySignature": "0x" + "44" * 65,
                "guard": "guard-1",
                "loginMethod": "email",
                "userEmail": "agent@example.com",
            },
        }
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def seal():
    """Encrypt a payload to a base64url public key the way the approver does."""

    def _seal(public_key, payload):
        data = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        box = SealedBox(PublicKey(b64url_decode(public_key)))
        return b64url_encode(box.encrypt(data))

    return _seal
