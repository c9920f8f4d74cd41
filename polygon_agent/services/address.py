"""Helpers for normalizing chain identifiers and validating wallet addresses."""

from __future__ import annotations

import re
from typing import Optional

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

_CHAIN_ALIASES = {
    "matic": "polygon",
    "polygon": "polygon",
    "pos": "polygon",
    "amoy": "amoy",
    "polygon-amoy": "amoy",
    "eth": "mainnet",
    "ethereum": "mainnet",
    "mainnet": "mainnet",
    "base": "base",
    "base-mainnet": "base",
    "arb": "arbitrum",
    "arbitrum": "arbitrum",
    "op": "optimism",
    "optimism": "optimism",
}

_CHAIN_IDS = {
    "polygon": 137,
    "amoy": 80002,
    "mainnet": 1,
    "base": 8453,
    "arbitrum": 42161,
    "optimism": 10,
}


def normalize_chain(chain: str | None) -> str:
    """Collapse user-provided chain identifiers into canonical slugs."""

    if not chain:
        return "polygon"
    canonical = _CHAIN_ALIASES.get(chain.lower().strip())
    return canonical or chain.lower().strip()


def resolve_chain_id(chain: str | None) -> Optional[int]:
    """Return the numeric chain id for a chain name or numeric string."""

    if chain is not None and str(chain).strip().isdigit():
        chain_id = int(str(chain).strip())
        return chain_id if chain_id in _CHAIN_IDS.values() else None
    return _CHAIN_IDS.get(normalize_chain(chain))


def chain_name_for_id(chain_id: int) -> Optional[str]:
    for name, value in _CHAIN_IDS.items():
        if value == chain_id:
            return name
    return None


def is_valid_evm_address(address: str | None) -> bool:
    if not address:
        return False
    return bool(_EVM_ADDRESS_RE.match(address))
