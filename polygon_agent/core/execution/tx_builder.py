"""
Transaction builder for the ERC-20 and conditional-token calls a trade needs.
"""

import secrets

from eth_utils import keccak

from .models import PreparedTransaction, TransactionType


def function_selector(signature: str) -> str:
    """0x-prefixed 4-byte selector for a canonical function signature."""
    return "0x" + keccak(text=signature)[:4].hex()


ERC20_APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)
SET_APPROVAL_FOR_ALL_SELECTOR = "0xa22cb465"  # setApprovalForAll(address,bool)
CTF_SPLIT_SELECTOR = function_selector("splitPosition(address,bytes32,bytes32,uint256[],uint256)")
NEG_RISK_SPLIT_SELECTOR = function_selector("splitPosition(bytes32,uint256)")

# Maximum uint256 for unlimited approval
MAX_UINT256 = 2**256 - 1

ZERO_BYTES32 = "0x" + "00" * 32

# Binary markets partition the collateral into index sets 1 (yes) and 2 (no)
BINARY_PARTITION = (1, 2)


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    if len(addr) != 40:
        raise ValueError(f"Invalid address: {address}")
    return addr.zfill(64)


def _encode_bool(value: bool) -> str:
    return _encode_uint256(1 if value else 0)


def _encode_bytes32(value: str) -> str:
    raw = value.lower().replace("0x", "")
    if len(raw) != 64:
        raise ValueError(f"Invalid bytes32: {value}")
    int(raw, 16)
    return raw


class TransactionBuilder:
    """
    Builds transactions for the trade flow.

    Handles:
    - ERC20 approvals and transfers
    - CTF setApprovalForAll
    - Position splits on the CTF and the neg-risk adapter
    """

    @staticmethod
    def generate_tx_id() -> str:
        """Generate a unique transaction ID."""
        return f"tx_{secrets.token_hex(16)}"

    @staticmethod
    def build_erc20_approve(
        chain_id: int,
        owner_address: str,
        token_address: str,
        spender_address: str,
        amount: int = MAX_UINT256,
        description: str = "",
    ) -> PreparedTransaction:
        """
        Build an ERC20 approval transaction.

        Args:
            chain_id: The chain ID
            owner_address: The token owner (sender)
            token_address: The ERC20 token contract
            spender_address: The address being approved to spend
            amount: The amount to approve (default: unlimited)
            description: Human-readable description

        Returns:
            PreparedTransaction ready to be signed
        """
        calldata = (
            ERC20_APPROVE_SELECTOR +
            _encode_address(spender_address) +
            _encode_uint256(amount)
        )

        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.APPROVE,
            chain_id=chain_id,
            from_address=owner_address,
            to_address=token_address,
            data=calldata,
            description=description or f"Approve {spender_address[:10]}... to spend tokens",
        )

    @staticmethod
    def build_erc20_transfer(
        chain_id: int,
        from_address: str,
        token_address: str,
        to_address: str,
        amount: int,
        description: str = "",
    ) -> PreparedTransaction:
        """
        Build an ERC20 transfer transaction.

        Args:
            chain_id: The chain ID
            from_address: The sender address
            token_address: The ERC20 token contract
            to_address: The recipient address
            amount: The amount to transfer (in smallest units)
            description: Human-readable description
        """
        calldata = (
            ERC20_TRANSFER_SELECTOR +
            _encode_address(to_address) +
            _encode_uint256(amount)
        )

        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.TRANSFER,
            chain_id=chain_id,
            from_address=from_address,
            to_address=token_address,
            data=calldata,
            description=description or f"Transfer {amount} units to {to_address[:10]}...",
        )

    @staticmethod
    def build_set_approval_for_all(
        chain_id: int,
        owner_address: str,
        token_address: str,
        operator_address: str,
        approved: bool = True,
    ) -> PreparedTransaction:
        calldata = (
            SET_APPROVAL_FOR_ALL_SELECTOR +
            _encode_address(operator_address) +
            _encode_bool(approved)
        )

        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.SET_APPROVAL_FOR_ALL,
            chain_id=chain_id,
            from_address=owner_address,
            to_address=token_address,
            data=calldata,
            description=f"Approve {operator_address[:10]}... to move outcome tokens",
        )

    @staticmethod
    def build_ctf_split(
        chain_id: int,
        owner_address: str,
        ctf_address: str,
        collateral_address: str,
        condition_id: str,
        amount: int,
    ) -> PreparedTransaction:
        """
        Build splitPosition(collateral, 0x0, conditionId, [1, 2], amount).

        The partition is a dynamic array, so the head carries its offset
        (five head words = 0xa0) and the tail carries length then elements.
        """
        head_words = 5
        calldata = (
            CTF_SPLIT_SELECTOR +
            _encode_address(collateral_address) +
            _encode_bytes32(ZERO_BYTES32) +
            _encode_bytes32(condition_id) +
            _encode_uint256(head_words * 32) +
            _encode_uint256(amount) +
            _encode_uint256(len(BINARY_PARTITION)) +
            "".join(_encode_uint256(i) for i in BINARY_PARTITION)
        )

        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.SPLIT,
            chain_id=chain_id,
            from_address=owner_address,
            to_address=ctf_address,
            data=calldata,
            description=f"Split {amount} collateral units into outcome tokens",
        )

    @staticmethod
    def build_neg_risk_split(
        chain_id: int,
        owner_address: str,
        adapter_address: str,
        condition_id: str,
        amount: int,
    ) -> PreparedTransaction:
        """Build NegRiskAdapter.splitPosition(conditionId, amount)."""
        calldata = (
            NEG_RISK_SPLIT_SELECTOR +
            _encode_bytes32(condition_id) +
            _encode_uint256(amount)
        )

        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.SPLIT,
            chain_id=chain_id,
            from_address=owner_address,
            to_address=adapter_address,
            data=calldata,
            description=f"Split {amount} collateral units via neg-risk adapter",
        )
