"""
Tests for the Polymarket HTTP client.
"""

import json
from decimal import Decimal

import httpx
import pytest

from polygon_agent.core.recovery import (
    EdgeProxyBlocked,
    MarketNotFound,
    RetryConfig,
    RetryStrategy,
    VenueAuthFailure,
    VenueOrderRejected,
)
from polygon_agent.providers.polymarket import (
    CredentialAlreadyExists,
    CredentialIssued,
    OrderSide,
    PolymarketClient,
)

CONDITION_ID = "0x" + "c0" * 32
L1_HEADERS = {"POLY_ADDRESS": "0x" + "ab" * 20, "POLY_SIGNATURE": "0x01", "POLY_TIMESTAMP": "1", "POLY_NONCE": "0"}

GAMMA_MARKET = {
    "id": "12345",
    "conditionId": CONDITION_ID,
    "question": "Will it rain tomorrow?",
    "outcomes": '["Yes", "No"]',
    "outcomePrices": '["0.1", "0.9"]',
    "clobTokenIds": '["111", "222"]',
    "volume24hr": 1234.5,
    "negRisk": False,
    "active": True,
    "closed": False,
    "endDate": "2026-12-31T00:00:00Z",
}


async def _no_sleep(_delay):
    return None


def _client(handler, max_attempts=3):
    return PolymarketClient(
        gamma_url="https://gamma.test",
        clob_url="https://clob.test",
        data_url="https://data.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry=RetryStrategy(RetryConfig(max_attempts=max_attempts), sleep=_no_sleep),
    )


# =============================================================================
# Markets
# =============================================================================

class TestMarkets:

    @pytest.mark.asyncio
    async def test_parses_json_string_arrays(self):
        client = _client(lambda request: httpx.Response(200, json=[GAMMA_MARKET]))

        markets = await client.get_markets(limit=1)

        market = markets[0]
        assert market.condition_id == CONDITION_ID
        assert market.yes.token_id == "111"
        assert market.no.token_id == "222"
        assert market.yes.price == Decimal("0.1")
        assert market.volume_24h == Decimal("1234.5")
        assert market.end_date.year == 2026

    @pytest.mark.asyncio
    async def test_search_filters_questions(self):
        other = {**GAMMA_MARKET, "conditionId": "0x01", "question": "Who wins the cup?"}
        client = _client(lambda request: httpx.Response(200, json=[GAMMA_MARKET, other]))

        markets = await client.get_markets(search="RAIN")

        assert [m.question for m in markets] == ["Will it rain tomorrow?"]

    @pytest.mark.asyncio
    async def test_get_market_scans_pages(self):
        offsets = []

        def handler(request):
            offset = int(request.url.params.get("offset", 0))
            offsets.append(offset)
            if offset == 100:
                return httpx.Response(200, json=[{**GAMMA_MARKET, "conditionId": CONDITION_ID.upper().replace("0X", "0x")}])
            return httpx.Response(200, json=[{**GAMMA_MARKET, "conditionId": "0x01"}])

        market = await _client(handler).get_market(CONDITION_ID)

        assert market.question == "Will it rain tomorrow?"
        assert offsets == [0, 100]

    @pytest.mark.asyncio
    async def test_get_market_falls_back_to_direct_lookup(self):
        def handler(request):
            if request.url.params.get("conditionId"):
                return httpx.Response(200, json=[{**GAMMA_MARKET, "closed": True}])
            return httpx.Response(200, json=[])

        market = await _client(handler).get_market(CONDITION_ID)

        assert market.closed is True

    @pytest.mark.asyncio
    async def test_get_market_not_found(self):
        client = _client(lambda request: httpx.Response(200, json=[]))
        with pytest.raises(MarketNotFound):
            await client.get_market(CONDITION_ID)


# =============================================================================
# Edge proxy handling
# =============================================================================

class TestEdgeProxy:

    @pytest.mark.asyncio
    async def test_retries_challenge_page(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if len(calls) < 3:
                return httpx.Response(403, text="<html>Attention Required! | Cloudflare</html>")
            return httpx.Response(200, json={"price": "0.42"})

        price = await _client(handler).get_price("222", OrderSide.BUY)

        assert price == Decimal("0.42")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(503, text="cf-ray: 8abc")

        with pytest.raises(EdgeProxyBlocked):
            await _client(handler, max_attempts=5).get_price("222")
        assert len(calls) == 5

    @pytest.mark.asyncio
    async def test_plain_403_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(403, json={"error": "forbidden"})

        with pytest.raises(VenueAuthFailure):
            await _client(handler).create_api_key(L1_HEADERS)
        assert len(calls) == 1


# =============================================================================
# Credentials & orders
# =============================================================================

class TestCredentials:

    @pytest.mark.asyncio
    async def test_issued(self):
        client = _client(lambda request: httpx.Response(
            200, json={"apiKey": "k", "secret": "s", "passphrase": "p"}
        ))

        issuance = await client.create_api_key(L1_HEADERS)

        assert isinstance(issuance, CredentialIssued)
        assert issuance.credential.api_key == "k"
        assert issuance.credential.signer_address == L1_HEADERS["POLY_ADDRESS"]

    @pytest.mark.asyncio
    async def test_already_exists(self):
        client = _client(lambda request: httpx.Response(400, json={"error": "Could not create api key"}))
        assert isinstance(await client.create_api_key(L1_HEADERS), CredentialAlreadyExists)

    @pytest.mark.asyncio
    async def test_derive_accepts_key_field(self):
        def handler(request):
            assert request.url.path == "/auth/derive-api-key"
            assert request.headers["POLY_ADDRESS"] == L1_HEADERS["POLY_ADDRESS"]
            return httpx.Response(200, json={"key": "k2", "secret": "s", "passphrase": "p"})

        credential = await _client(handler).derive_api_key(L1_HEADERS)
        assert credential.api_key == "k2"

    @pytest.mark.asyncio
    async def test_derive_incomplete_response(self):
        client = _client(lambda request: httpx.Response(200, json={"apiKey": "k"}))
        with pytest.raises(VenueAuthFailure):
            await client.derive_api_key(L1_HEADERS)


class TestOrders:

    @pytest.mark.asyncio
    async def test_post_order_sends_exact_body(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "orderID": "0xabc", "status": "live"})

        body = json.dumps({"order": {}, "owner": "k", "orderType": "GTC"}, separators=(",", ":"))
        response = await _client(handler).post_order(body, {"POLY_API_KEY": "k"})

        assert response["orderID"] == "0xabc"
        assert seen[0].content.decode() == body
        assert seen[0].headers["content-type"] == "application/json"
        assert seen[0].headers["POLY_API_KEY"] == "k"

    @pytest.mark.asyncio
    async def test_post_order_error_message(self):
        client = _client(lambda request: httpx.Response(200, json={"success": False, "errorMsg": "not enough balance"}))
        with pytest.raises(VenueOrderRejected) as exc_info:
            await client.post_order("{}", {})
        assert "not enough balance" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_post_order_http_error(self):
        client = _client(lambda request: httpx.Response(400, json={"error": "invalid order"}))
        with pytest.raises(VenueOrderRejected):
            await client.post_order("{}", {})

    @pytest.mark.asyncio
    async def test_post_order_edge_proxy_block_is_order_rejection(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(403, text="Attention Required! | Cloudflare cf-ray: 8abc")

        with pytest.raises(VenueOrderRejected) as exc_info:
            await _client(handler, max_attempts=3).post_order("{}", {})

        assert len(calls) == 3
        assert isinstance(exc_info.value.__cause__, EdgeProxyBlocked)
        assert exc_info.value.category.value == "order_rejected"

    @pytest.mark.asyncio
    async def test_open_orders_paginated_shape(self):
        client = _client(lambda request: httpx.Response(200, json={
            "data": [{"id": "0x1", "status": "LIVE", "side": "SELL", "price": "0.35"}],
            "next_cursor": "LTE=",
        }))

        orders = await client.get_open_orders({})

        assert orders[0].id == "0x1"
        assert orders[0].price == Decimal("0.35")

    @pytest.mark.asyncio
    async def test_cancel_order_path(self):
        def handler(request):
            assert request.method == "DELETE"
            assert request.url.path == "/order/0x1"
            return httpx.Response(200, json={"canceled": ["0x1"]})

        assert await _client(handler).cancel_order("0x1", {}) == {"canceled": ["0x1"]}


class TestPositions:

    @pytest.mark.asyncio
    async def test_positions(self):
        def handler(request):
            assert request.url.params["user"] == "0xme"
            return httpx.Response(200, json=[{
                "conditionId": CONDITION_ID, "asset": "111", "outcome": "Yes", "title": "Rain?",
                "size": 10, "avgPrice": 0.1, "currentValue": 1.2, "cashPnl": 0.2,
            }])

        positions = await _client(handler).get_positions("0xme")

        assert positions[0].token_id == "111"
        assert positions[0].size == Decimal("10")
