"""
Tests for the signing-identity transaction executor.
"""

import json

import httpx
import pytest

from polygon_agent.core.execution.executor import MIN_PRIORITY_FEE_WEI, TransactionExecutor
from polygon_agent.core.execution.models import TransactionStatus
from polygon_agent.core.execution.tx_builder import TransactionBuilder
from polygon_agent.core.recovery import InsufficientGas, TransactionFailed
from polygon_agent.core.wallet.identity import SigningIdentity

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TOKEN = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
SPENDER = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
TX_HASH = "0x" + "aa" * 32
INSUFFICIENT = "insufficient funds for gas * price + value: balance 0, tx cost 4200000000000000"

BASE_RESPONSES = {
    "eth_estimateGas": "0xc350",
    "eth_feeHistory": {"baseFeePerGas": ["0x3b9aca00", "0x3b9aca00"], "reward": [["0x1"]]},
    "eth_getTransactionCount": "0x7",
    "eth_sendRawTransaction": TX_HASH,
    "eth_getTransactionReceipt": {"blockNumber": "0x10", "gasUsed": "0xc350", "status": "0x1"},
}


def _executor(responses, calls, **kwargs):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body)
        value = responses[body["method"]]
        if isinstance(value, Exception):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": str(value)}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": value})

    identity = SigningIdentity.from_private_key(PRIVATE_KEY)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return identity, TransactionExecutor(identity, rpc_url="https://rpc.test", http_client=client, **kwargs)


def _approve(identity):
    return TransactionBuilder.build_erc20_approve(137, identity.address, TOKEN, SPENDER)


@pytest.mark.asyncio
async def test_send_confirms() -> None:
    calls = []
    identity, executor = _executor(BASE_RESPONSES, calls)

    result = await executor.send(_approve(identity))

    assert result.status == TransactionStatus.CONFIRMED
    assert result.tx_hash == TX_HASH
    assert result.block_number == 16
    assert calls[2]["params"] == [identity.address, "pending"]
    raw = calls[3]["params"][0]
    assert raw.startswith("0x02")
    await executor.close()


@pytest.mark.asyncio
async def test_gas_estimate_applies_multiplier_and_floor() -> None:
    identity, executor = _executor(BASE_RESPONSES, [], gas_multiplier=1.5)

    gas = await executor.estimate_gas(_approve(identity))

    assert gas.gas_limit == int(0xC350 * 1.5)
    assert gas.max_priority_fee_per_gas == MIN_PRIORITY_FEE_WEI
    assert gas.max_fee_per_gas == 2 * 0x3B9ACA00 + MIN_PRIORITY_FEE_WEI
    await executor.close()


@pytest.mark.asyncio
async def test_insufficient_funds_surfaces_node_message() -> None:
    responses = {**BASE_RESPONSES, "eth_sendRawTransaction": RuntimeError(INSUFFICIENT)}
    identity, executor = _executor(responses, [])

    with pytest.raises(InsufficientGas) as exc_info:
        await executor.send(_approve(identity))

    assert exc_info.value.message == INSUFFICIENT
    await executor.close()


@pytest.mark.asyncio
async def test_revert_raises_with_hash() -> None:
    responses = {
        **BASE_RESPONSES,
        "eth_getTransactionReceipt": {"blockNumber": "0x10", "gasUsed": "0x1", "status": "0x0"},
    }
    identity, executor = _executor(responses, [])

    with pytest.raises(TransactionFailed) as exc_info:
        await executor.send(_approve(identity))

    assert exc_info.value.tx_hash == TX_HASH
    await executor.close()


@pytest.mark.asyncio
async def test_missing_receipt_times_out() -> None:
    responses = {**BASE_RESPONSES, "eth_getTransactionReceipt": None}
    identity, executor = _executor(responses, [], receipt_timeout=0.05, poll_interval=0.01)

    with pytest.raises(TransactionFailed):
        await executor.send(_approve(identity))
    await executor.close()


@pytest.mark.asyncio
async def test_other_rpc_errors() -> None:
    responses = {**BASE_RESPONSES, "eth_estimateGas": RuntimeError("execution reverted")}
    identity, executor = _executor(responses, [])

    with pytest.raises(TransactionFailed):
        await executor.send(_approve(identity))
    await executor.close()
