"""
Tests for the buy flow: planning, step ordering and partial-failure reporting.
"""

import itertools
import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from polygon_agent.core.execution.models import TransactionResult, TransactionStatus, TransactionType
from polygon_agent.core.polymarket import (
    OrderKind,
    StepLedger,
    StepFailure,
    StepSuccess,
    TradeOrchestrator,
    TradeOutcome,
    TradeStatus,
    TradeStep,
    market_sell_price,
)
from polygon_agent.core.polymarket import contracts
from polygon_agent.core.recovery import InvalidPayload, MarketNotFound, MissingSession, TransactionFailed, VenueOrderRejected
from polygon_agent.core.wallet.identity import SigningIdentity
from polygon_agent.core.wallet.models import WalletSession
from polygon_agent.providers.polymarket.models import CredentialIssued, Market, Outcome, VenueCredential

CONDITION_ID = "0x" + "c0" * 32
WALLET = "0x" + "ab" * 20
YES_TOKEN = "111"
NO_TOKEN = "222"
SECRET = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="


def _market(neg_risk=False, yes_price="0.10"):
    return Market(
        conditionId=CONDITION_ID,
        question="Will it happen?",
        tokens=[
            Outcome(tokenId=YES_TOKEN, outcome="Yes", price=Decimal(yes_price)),
            Outcome(tokenId=NO_TOKEN, outcome="No", price=Decimal("1") - Decimal(yes_price)),
        ],
        negRisk=neg_risk,
    )


def _venue(market=None, bid="0.88"):
    venue = AsyncMock()
    venue.get_market.return_value = market or _market()
    venue.get_price.return_value = Decimal(bid)
    venue.post_order.return_value = {"success": True, "orderID": "0xorder", "status": "matched"}
    return venue


def _executor():
    counter = itertools.count(1)
    executor = AsyncMock()
    executor.send.side_effect = lambda tx: TransactionResult(
        tx_id=tx.tx_id, tx_hash=f"0x{next(counter):064x}", status=TransactionStatus.CONFIRMED
    )
    return executor


@pytest.fixture
def identity(store):
    identity = SigningIdentity.generate()
    identity.save(store)
    return identity


@pytest.fixture
def session(store):
    session = WalletSession(
        wallet_name="main",
        wallet_address=WALLET,
        chain_id=137,
        chain_name="polygon",
        explicit_session={"pk": "0x01"},
        implicit_session={"pk": "0x02", "attestation": {}, "identitySignature": "0x03"},
    )
    store.save_session(session)
    return session


def _orchestrator(store, venue, custodial=None, executor=None):
    custodial = custodial or AsyncMock()
    custodial.send_transactions.return_value = "0xfund"
    executor = executor or _executor()
    orchestrator = TradeOrchestrator(
        venue=venue,
        store=store,
        custodial=custodial,
        executor_factory=lambda _identity: executor,
    )
    return orchestrator, custodial, executor


def _issue_credential(venue, identity):
    venue.create_api_key.return_value = CredentialIssued(
        VenueCredential(api_key="api-key", api_secret=SECRET, passphrase="pp", signer_address=identity.address)
    )


# =============================================================================
# Planning
# =============================================================================

class TestPlan:

    def test_sell_price_floor(self):
        assert market_sell_price(Decimal("0")) == Decimal("0.01")
        assert market_sell_price(Decimal("0.005")) == Decimal("0.01")
        assert market_sell_price(Decimal("0.5")) == Decimal("0.45")

    @pytest.mark.asyncio
    async def test_buy_yes_without_price(self, store):
        """10% yes market, buy yes for $10, no limit price."""
        venue = _venue()
        orchestrator, _, _ = _orchestrator(store, venue)

        plan = await orchestrator.plan(CONDITION_ID, TradeOutcome.YES, Decimal("10"))

        assert plan.split_amount_units == "10000000"
        assert plan.order_kind == OrderKind.IMMEDIATE_OR_CANCEL
        assert plan.wanted_token_id == YES_TOKEN
        assert plan.unwanted_token_id == NO_TOKEN
        assert plan.sell_price == Decimal("0.9") * Decimal("0.88")
        venue.get_price.assert_awaited_once()
        assert venue.get_price.await_args.args[0] == NO_TOKEN

        output = plan.to_output()
        assert output["splitAmountUnits"] == "10000000"
        assert output["orderKind"] == "immediate-or-cancel"
        assert output["orderType"] == "FOK"

    @pytest.mark.asyncio
    async def test_buy_with_limit_price(self, store):
        orchestrator, _, _ = _orchestrator(store, _venue())

        plan = await orchestrator.plan(CONDITION_ID, "yes", Decimal("10"), price=Decimal("0.35"))

        assert plan.order_kind == OrderKind.RESTING
        assert plan.sell_price == Decimal("0.35")
        assert plan.to_output()["sellUnwantedAt"] == "0.35"
        assert plan.to_output()["orderType"] == "GTC"

    @pytest.mark.asyncio
    async def test_buy_no_sells_yes(self, store):
        orchestrator, _, _ = _orchestrator(store, _venue())
        plan = await orchestrator.plan(CONDITION_ID, TradeOutcome.NO, Decimal("5"))
        assert plan.wanted_token_id == NO_TOKEN
        assert plan.unwanted_token_id == YES_TOKEN

    @pytest.mark.asyncio
    async def test_empty_book_uses_floor(self, store):
        orchestrator, _, _ = _orchestrator(store, _venue(bid="0"))
        plan = await orchestrator.plan(CONDITION_ID, TradeOutcome.YES, Decimal("1"))
        assert plan.sell_price == Decimal("0.01")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,price", [(Decimal("0"), None), (Decimal("-1"), None), (Decimal("1"), Decimal("1"))])
    async def test_invalid_inputs(self, store, amount, price):
        orchestrator, _, _ = _orchestrator(store, _venue())
        with pytest.raises(InvalidPayload):
            await orchestrator.plan(CONDITION_ID, TradeOutcome.YES, amount, price=price)

    @pytest.mark.asyncio
    async def test_unknown_market(self, store):
        venue = _venue()
        venue.get_market.side_effect = MarketNotFound(CONDITION_ID)
        orchestrator, _, _ = _orchestrator(store, venue)
        with pytest.raises(MarketNotFound):
            await orchestrator.plan(CONDITION_ID, TradeOutcome.YES, Decimal("1"))


# =============================================================================
# Execution
# =============================================================================

class TestExecute:

    @pytest.mark.asyncio
    async def test_dry_run_touches_nothing(self, store):
        orchestrator, custodial, executor = _orchestrator(store, _venue())

        result = await orchestrator.execute("main", CONDITION_ID, TradeOutcome.YES, Decimal("10"))

        assert result.status == TradeStatus.DRY_RUN
        custodial.send_transactions.assert_not_awaited()
        executor.send.assert_not_awaited()
        data = result.to_dict()
        assert data["ok"] is True
        assert data["dryRun"] is True
        assert "fundTxHash" not in data

    @pytest.mark.asyncio
    async def test_full_run(self, store, identity, session):
        venue = _venue()
        _issue_credential(venue, identity)
        orchestrator, custodial, executor = _orchestrator(store, venue)

        result = await orchestrator.execute(
            "main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False
        )

        assert result.status == TradeStatus.COMPLETED
        assert result.fund_tx_hash == "0xfund"
        assert result.order_id == "0xorder"
        assert [e.step for e in result.ledger.entries] == list(TradeStep)

        fund_tx = custodial.send_transactions.await_args.args[1][0]
        assert fund_tx.to_address == contracts.USDC_E
        assert fund_tx.data.endswith(format(10_000_000, "064x"))

        sent = [c.args[0] for c in executor.send.await_args_list]
        assert [tx.tx_type for tx in sent] == [
            TransactionType.APPROVE,
            TransactionType.APPROVE,
            TransactionType.SET_APPROVAL_FOR_ALL,
            TransactionType.SPLIT,
        ]
        assert sent[-1].to_address == contracts.CTF
        executor.close.assert_awaited_once()

        body, headers = venue.post_order.await_args.args
        order = json.loads(body)
        assert order["owner"] == "api-key"
        assert order["orderType"] == "FOK"
        assert order["order"]["tokenId"] == NO_TOKEN
        assert order["order"]["maker"] == identity.address
        assert headers["POLY_API_KEY"] == "api-key"

    @pytest.mark.asyncio
    async def test_resting_order_type(self, store, identity, session):
        venue = _venue()
        _issue_credential(venue, identity)
        orchestrator, _, _ = _orchestrator(store, venue)

        result = await orchestrator.execute(
            "main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), price=Decimal("0.35"), dry_run=False
        )

        order = json.loads(venue.post_order.await_args.args[0])
        assert order["orderType"] == "GTC"
        assert order["order"]["takerAmount"] == "3500000"
        assert result.to_dict()["orderKind"] == "resting"

    @pytest.mark.asyncio
    async def test_neg_risk_routes_through_adapter(self, store, identity, session):
        venue = _venue(market=_market(neg_risk=True))
        _issue_credential(venue, identity)
        orchestrator, _, executor = _orchestrator(store, venue)

        await orchestrator.execute("main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False)

        sent = [c.args[0] for c in executor.send.await_args_list]
        assert len(sent) == 7
        assert sent[-1].to_address == contracts.NEG_RISK_ADAPTER

    @pytest.mark.asyncio
    async def test_order_failure_after_split(self, store, identity, session):
        """Order rejected after the split: on-chain steps stand, nothing is undone."""
        venue = _venue()
        _issue_credential(venue, identity)
        venue.post_order.side_effect = VenueOrderRejected("CLOB order error: not enough balance")
        orchestrator, custodial, executor = _orchestrator(store, venue)

        result = await orchestrator.execute(
            "main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False
        )

        assert result.status == TradeStatus.PARTIAL
        assert result.fund_tx_hash is not None
        assert result.approve_tx_hash is not None
        assert result.custody_approve_tx_hash is not None
        assert result.split_tx_hash is not None
        assert result.order_id is None
        assert "not enough balance" in result.order_error
        assert result.tokens_held_by == identity.address

        custodial.send_transactions.assert_awaited_once()
        assert executor.send.await_count == 4

        data = result.to_dict()
        assert data["ok"] is False
        assert data["orderId"] is None
        assert data["steps"][-1] == {
            "step": "submit_order",
            "ok": False,
            "error": "CLOB order error: not enough balance",
            "category": "order_rejected",
        }

    @pytest.mark.asyncio
    async def test_fund_failure_is_not_partial(self, store, identity, session):
        custodial = AsyncMock()
        orchestrator, custodial, executor = _orchestrator(store, _venue(), custodial=custodial)
        custodial.send_transactions.side_effect = TransactionFailed("rejected")

        result = await orchestrator.execute(
            "main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False
        )

        assert result.status == TradeStatus.FAILED
        assert result.fund_tx_hash is None
        assert result.error == "rejected"
        executor.send.assert_not_awaited()
        executor.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_split_failure_keeps_earlier_steps(self, store, identity, session):
        executor = _executor()
        results = iter([
            TransactionResult(tx_id="a", tx_hash="0x01"),
            TransactionResult(tx_id="b", tx_hash="0x02"),
            TransactionResult(tx_id="c", tx_hash="0x03"),
        ])

        def send(tx):
            if tx.tx_type == TransactionType.SPLIT:
                raise TransactionFailed("execution reverted")
            return next(results)

        executor.send.side_effect = send
        venue = _venue()
        orchestrator, _, _ = _orchestrator(store, venue, executor=executor)

        result = await orchestrator.execute(
            "main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False
        )

        assert result.status == TradeStatus.PARTIAL
        assert result.approve_tx_hash == "0x02"
        assert result.custody_approve_tx_hash == "0x03"
        assert result.split_tx_hash is None
        assert result.tokens_held_by is None
        venue.create_api_key.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_identity(self, store, session):
        orchestrator, custodial, _ = _orchestrator(store, _venue())
        with pytest.raises(MissingSession):
            await orchestrator.execute("main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False)
        custodial.send_transactions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_session(self, store, identity):
        orchestrator, _, _ = _orchestrator(store, _venue())
        with pytest.raises(MissingSession):
            await orchestrator.execute("main", CONDITION_ID, TradeOutcome.YES, Decimal("10"), dry_run=False)


class TestStepLedger:

    def test_rejects_duplicate_step(self):
        ledger = StepLedger()
        ledger.record(TradeStep.PLAN, StepSuccess(reference="x"))
        with pytest.raises(ValueError):
            ledger.record(TradeStep.PLAN, StepSuccess(reference="y"))

    def test_nothing_after_failure(self):
        ledger = StepLedger()
        ledger.record(TradeStep.FUND, StepFailure(error="boom"))
        with pytest.raises(ValueError):
            ledger.record(TradeStep.APPROVE_SPEND, StepSuccess(reference="0x1"))

    def test_on_chain_effects(self):
        ledger = StepLedger()
        ledger.record(TradeStep.PLAN, StepSuccess())
        assert ledger.has_on_chain_effects is False
        ledger.record(TradeStep.FUND, StepSuccess(reference="0x1"))
        assert ledger.has_on_chain_effects is True
