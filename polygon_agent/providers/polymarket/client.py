"""
Polymarket API Client

Client for interacting with Polymarket's APIs:
- CLOB API (clob.polymarket.com) - Prices, credentials, orders
- Gamma API (gamma-api.polymarket.com) - Market discovery
- Data API (data-api.polymarket.com) - User positions

CLOB POSTs are sometimes answered by the edge proxy with a challenge page;
those and transport errors are retried with linear backoff.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from ...config import settings
from ...core.recovery.errors import (
    EdgeProxyBlocked,
    MarketNotFound,
    VenueAuthFailure,
    VenueOrderRejected,
)
from ...core.recovery.strategies import RetryConfig, RetryStrategy
from .models import (
    CredentialAlreadyExists,
    CredentialIssuance,
    CredentialIssued,
    Market,
    OpenOrder,
    OrderSide,
    Outcome,
    Position,
    VenueCredential,
)

logger = logging.getLogger(__name__)

EDGE_PROXY_MARKERS = ("Cloudflare", "cf-ray")
MARKET_SCAN_PAGES = 5
MARKET_PAGE_SIZE = 100


def is_edge_proxy_rejection(response: httpx.Response) -> bool:
    if response.status_code not in (403, 503):
        return False
    text = response.text
    return any(marker in text for marker in EDGE_PROXY_MARKERS)


class PolymarketClient:
    """
    Client for Polymarket prediction markets.

    Provides access to:
    - Market discovery and lookup
    - Best bid and ask prices
    - API credential issuance/derivation (L1 headers supplied by the caller)
    - Order placement, listing and cancellation (L2 headers supplied by the caller)
    - User positions
    """

    def __init__(
        self,
        gamma_url: Optional[str] = None,
        clob_url: Optional[str] = None,
        data_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryStrategy] = None,
    ):
        """
        Initialize Polymarket client.

        Args:
            gamma_url: Gamma API base URL
            clob_url: CLOB API base URL
            data_url: Data API base URL
            timeout: Request timeout in seconds
            http_client: Pre-built client (tests pass one with a mock transport)
            retry: Retry strategy for edge-proxy and transport failures
        """
        self.gamma_url = (gamma_url or settings.polymarket_gamma_url).rstrip("/")
        self.clob_url = (clob_url or settings.polymarket_clob_url).rstrip("/")
        self.data_url = (data_url or settings.polymarket_data_url).rstrip("/")
        self.timeout = timeout or settings.polymarket_timeout_seconds
        self._http_client = http_client
        self.retry = retry or RetryStrategy(RetryConfig(max_attempts=settings.venue_max_attempts))

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[str] = None,
    ) -> httpx.Response:
        client = await self._get_client()

        async def attempt() -> httpx.Response:
            response = await client.request(method, url, params=params, headers=headers, content=content)
            if is_edge_proxy_rejection(response):
                raise EdgeProxyBlocked(
                    f"{method} {url} blocked by edge proxy ({response.status_code})",
                    status_code=response.status_code,
                )
            return response

        return await self.retry.execute(attempt, context={"operation": f"{method} {url}"})

    # =========================================================================
    # Market Discovery (Gamma API)
    # =========================================================================

    async def get_markets(
        self,
        limit: int = 20,
        offset: int = 0,
        search: Optional[str] = None,
    ) -> List[Market]:
        """
        Get active markets ordered by 24h volume.

        Args:
            limit: Max results to return
            offset: Pagination offset
            search: Case-insensitive substring filter on the question

        Returns:
            List of markets
        """
        # Gamma has no full-text search, so over-fetch and filter here
        fetch_limit = max(100, limit * 5) if search else limit
        data = await self._get_market_page(fetch_limit, offset)
        markets = self._parse_markets(data)

        if search:
            needle = search.lower()
            markets = [m for m in markets if needle in m.question.lower()][:limit]
        return markets

    async def get_market(self, condition_id: str) -> Market:
        """
        Get a single market by condition ID.

        Scans the top active markets by volume, then falls back to a direct
        lookup that also covers closed markets.

        Raises:
            MarketNotFound: no market with this condition ID
        """
        needle = condition_id.lower()

        for page in range(MARKET_SCAN_PAGES):
            data = await self._get_market_page(MARKET_PAGE_SIZE, page * MARKET_PAGE_SIZE)
            if not data:
                break
            for item in data:
                if str(item.get("conditionId", "")).lower() == needle:
                    return self._parse_market(item)

        response = await self._request(
            "GET",
            f"{self.gamma_url}/markets",
            params={"conditionId": condition_id, "limit": MARKET_PAGE_SIZE},
        )
        if response.is_success:
            for item in response.json() or []:
                if str(item.get("conditionId", "")).lower() == needle:
                    return self._parse_market(item)

        raise MarketNotFound(condition_id)

    async def _get_market_page(self, limit: int, offset: int) -> List[Dict[str, Any]]:
        params = {
            "limit": limit,
            "offset": offset,
            "active": "true",
            "closed": "false",
            "order": "volume24hr",
            "ascending": "false",
        }
        try:
            response = await self._request("GET", f"{self.gamma_url}/markets", params=params)
            response.raise_for_status()
            return response.json() or []
        except httpx.HTTPError as e:
            logger.error(f"Failed to get markets: {e}")
            raise

    # =========================================================================
    # Pricing (CLOB API)
    # =========================================================================

    async def get_price(self, token_id: str, side: OrderSide = OrderSide.BUY) -> Decimal:
        """
        Get the best price for a token side.

        Args:
            token_id: Token ID
            side: BUY returns the best bid, SELL the best ask

        Returns:
            Price between 0 and 1
        """
        try:
            response = await self._request(
                "GET",
                f"{self.clob_url}/price",
                params={"token_id": token_id, "side": side.value},
            )
            response.raise_for_status()
            data = response.json()
            return Decimal(str(data.get("price", 0)))
        except httpx.HTTPError as e:
            logger.error(f"Failed to get price for {token_id}: {e}")
            raise

    # =========================================================================
    # Credentials (CLOB L1)
    # =========================================================================

    async def create_api_key(self, l1_headers: Dict[str, str]) -> CredentialIssuance:
        """
        Ask the venue to issue a new API credential.

        Returns:
            CredentialIssued, or CredentialAlreadyExists when the venue refuses
            because this identity/nonce already has one

        Raises:
            VenueAuthFailure: the signature itself was rejected
        """
        response = await self._request("POST", f"{self.clob_url}/auth/api-key", headers=l1_headers)

        if response.is_success:
            return CredentialIssued(self._parse_credential(response, l1_headers))
        if response.status_code in (401, 403):
            raise VenueAuthFailure(
                f"Credential issuance rejected: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        if 400 <= response.status_code < 500:
            logger.info(f"Credential issuance declined ({response.status_code}); deriving existing credential")
            return CredentialAlreadyExists(detail=response.text)

        raise VenueAuthFailure(
            f"Credential issuance failed: {response.status_code} {response.text}",
            status_code=response.status_code,
        )

    async def derive_api_key(self, l1_headers: Dict[str, str]) -> VenueCredential:
        """Recover the existing credential for this identity/nonce."""
        response = await self._request("GET", f"{self.clob_url}/auth/derive-api-key", headers=l1_headers)
        if not response.is_success:
            raise VenueAuthFailure(
                f"Credential derivation failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        return self._parse_credential(response, l1_headers)

    def _parse_credential(self, response: httpx.Response, l1_headers: Dict[str, str]) -> VenueCredential:
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise VenueAuthFailure(f"Credential response is not JSON: {e}") from e

        api_key = data.get("apiKey") or data.get("key")
        if not api_key or not data.get("secret") or not data.get("passphrase"):
            raise VenueAuthFailure("Credential response is missing fields")

        return VenueCredential(
            api_key=api_key,
            api_secret=data["secret"],
            passphrase=data["passphrase"],
            signer_address=l1_headers["POLY_ADDRESS"],
        )

    # =========================================================================
    # Orders (CLOB L2)
    # =========================================================================

    async def post_order(self, body: str, l2_headers: Dict[str, str]) -> Dict[str, Any]:
        """
        Submit a signed order.

        Args:
            body: Exact JSON text that the L2 signature covers
            l2_headers: Signed request headers

        Returns:
            Venue response (contains orderID on success)

        Raises:
            VenueOrderRejected: non-2xx, a 2xx carrying an error, or an edge
                proxy block that outlasted the retries
        """
        headers = {**l2_headers, "Content-Type": "application/json"}
        try:
            response = await self._request("POST", f"{self.clob_url}/order", headers=headers, content=body)
        except EdgeProxyBlocked as e:
            raise VenueOrderRejected(f"CLOB order blocked by edge proxy: {e.message}") from e

        if response.status_code in (401, 403):
            raise VenueAuthFailure(
                f"Order authentication rejected: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise VenueOrderRejected(f"CLOB order error: {response.status_code} {response.text}")

        data = response.json()
        if data.get("success") is False or data.get("errorMsg"):
            raise VenueOrderRejected(f"CLOB order error: {data.get('errorMsg') or 'rejected'}", response=data)
        return data

    async def get_open_orders(self, l2_headers: Dict[str, str]) -> List[OpenOrder]:
        response = await self._request("GET", f"{self.clob_url}/data/orders", headers=l2_headers)
        self._raise_for_auth(response, "List orders")
        data = response.json()
        # Newer deployments paginate as {"data": [...], "next_cursor": ...}
        items = data.get("data", []) if isinstance(data, dict) else data
        return [OpenOrder.model_validate(item) for item in items]

    async def cancel_order(self, order_id: str, l2_headers: Dict[str, str]) -> Dict[str, Any]:
        response = await self._request("DELETE", f"{self.clob_url}/order/{order_id}", headers=l2_headers)
        self._raise_for_auth(response, "Cancel order")
        return response.json()

    def _raise_for_auth(self, response: httpx.Response, action: str) -> None:
        if response.status_code in (401, 403):
            raise VenueAuthFailure(
                f"{action} rejected: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        response.raise_for_status()

    # =========================================================================
    # User Data (Data API)
    # =========================================================================

    async def get_positions(self, address: str, limit: int = 20) -> List[Position]:
        """
        Get user's positions.

        Args:
            address: Wallet address holding the outcome tokens
            limit: Max results

        Returns:
            List of positions
        """
        try:
            response = await self._request(
                "GET",
                f"{self.data_url}/positions",
                params={"user": address, "limit": limit},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to get positions for {address}: {e}")
            raise

        positions = []
        for item in data:
            try:
                positions.append(Position.model_validate(item))
            except ValueError as e:
                logger.warning(f"Failed to parse position: {e}")
        return positions

    # =========================================================================
    # Parsing Helpers
    # =========================================================================

    def _parse_markets(self, data: List[Dict[str, Any]]) -> List[Market]:
        markets = []
        for item in data:
            try:
                markets.append(self._parse_market(item))
            except ValueError as e:
                logger.warning(f"Failed to parse market: {e}")
        return markets

    def _parse_market(self, data: Dict[str, Any]) -> Market:
        """Parse market from API response."""
        # Gamma encodes these arrays as JSON strings
        token_ids = self._parse_json_list(data.get("clobTokenIds"), [])
        prices = self._parse_json_list(data.get("outcomePrices"), [])
        outcomes = self._parse_json_list(data.get("outcomes"), ["Yes", "No"])

        tokens = []
        for i, token_id in enumerate(token_ids):
            tokens.append(Outcome(
                tokenId=str(token_id),
                outcome=outcomes[i] if i < len(outcomes) else "",
                price=self._parse_decimal(prices[i]) if i < len(prices) else None,
            ))

        return Market(
            id=str(data["id"]) if data.get("id") is not None else None,
            conditionId=data.get("conditionId", ""),
            question=data.get("question") or "",
            outcomes=[str(o) for o in outcomes],
            tokens=tokens,
            volume24hr=self._parse_decimal(data.get("volume24hr")) or Decimal("0"),
            negRisk=bool(data.get("negRisk")),
            active=bool(data.get("active", True)),
            closed=bool(data.get("closed", False)),
            endDate=self._parse_datetime(data.get("endDate")),
        )

    def _parse_json_list(self, value: Any, default: List[Any]) -> List[Any]:
        if value is None or value == "":
            return default
        if isinstance(value, list):
            return value
        try:
            parsed = json.loads(value)
        except (TypeError, json.JSONDecodeError):
            return default
        return parsed if isinstance(parsed, list) else default

    def _parse_decimal(self, value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    def _parse_datetime(self, value: Any) -> Optional[datetime]:
        """Parse datetime from ISO strings."""
        if not value or not isinstance(value, str):
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None

