"""
Trade orchestrator: buy one outcome of a binary market by splitting
collateral into both outcomes and selling the unwanted side.

Steps run strictly in order and never roll back:

    plan -> fund -> approve_spend -> approve_custody -> split
         -> derive_credential -> submit_order

Once the fund step starts, failures are recorded in the step ledger and the
result is returned instead of raised, so callers always learn which on-chain
effects already happened.
"""

import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Union

from ...providers.polymarket.client import PolymarketClient
from ...providers.polymarket.models import OrderSide
from ..execution.custodial import CustodialWalletClient
from ..execution.executor import TransactionExecutor
from ..execution.tx_builder import MAX_UINT256, TransactionBuilder
from ..recovery.errors import InvalidPayload, MissingSession, classify_error
from ..vault.store import VaultStore
from ..wallet.identity import SigningIdentity
from . import contracts
from .auth import VenueAuthSigner
from .models import (
    OrderKind,
    StepFailure,
    StepLedger,
    StepSuccess,
    TradeOutcome,
    TradePlan,
    TradeResult,
    TradeStatus,
    TradeStep,
)
from .orders import build_sell_order, order_request_body, to_base_units

logger = logging.getLogger(__name__)

MIN_SELL_PRICE = Decimal("0.01")
MARKET_SELL_DISCOUNT = Decimal("0.9")


def market_sell_price(best_bid: Decimal) -> Decimal:
    """Price for an immediate sale: 90% of the best bid, never below one cent."""
    return max(MIN_SELL_PRICE, MARKET_SELL_DISCOUNT * Decimal(best_bid))


class TradeOrchestrator:
    """Runs the buy flow for a named wallet using the stored signing identity."""

    def __init__(
        self,
        venue: PolymarketClient,
        store: VaultStore,
        custodial: CustodialWalletClient,
        executor_factory: Callable[[SigningIdentity], TransactionExecutor],
        signer: Optional[VenueAuthSigner] = None,
        chain_id: int = contracts.POLYGON_CHAIN_ID,
    ):
        self.venue = venue
        self.store = store
        self.custodial = custodial
        self.executor_factory = executor_factory
        self.signer = signer or VenueAuthSigner(venue)
        self.chain_id = chain_id

    # =========================================================================
    # Planning
    # =========================================================================

    async def plan(
        self,
        market_id: str,
        outcome: Union[TradeOutcome, str],
        usd_amount: Decimal,
        price: Optional[Decimal] = None,
    ) -> TradePlan:
        """
        Decide tokens, split size and sell price. Reads only.

        Args:
            market_id: Condition ID
            outcome: YES or NO, the side to keep
            usd_amount: USDC.e to split
            price: Explicit limit price for the unwanted side (resting order);
                omitted means an immediate sale at a discount to the best bid

        Raises:
            MarketNotFound: unknown condition id
            InvalidPayload: market lacks two outcome tokens or inputs out of range
        """
        if not isinstance(outcome, TradeOutcome):
            try:
                outcome = TradeOutcome(str(outcome).upper())
            except ValueError as e:
                raise InvalidPayload(f"Outcome must be YES or NO, got {outcome}", field_name="outcome") from e
        usd_amount = Decimal(usd_amount)
        if usd_amount <= 0:
            raise InvalidPayload("Amount must be positive", field_name="amount")
        if price is not None and not Decimal("0") < Decimal(price) < Decimal("1"):
            raise InvalidPayload("Price must be between 0 and 1", field_name="price")

        market = await self.venue.get_market(market_id)
        if market.yes is None or market.no is None:
            raise InvalidPayload(f"Market {market_id} has no tradable outcome tokens", field_name="clobTokenIds")

        wanted, unwanted = (market.yes, market.no) if outcome is TradeOutcome.YES else (market.no, market.yes)

        best_bid = await self.venue.get_price(unwanted.token_id, OrderSide.BUY)
        if price is not None:
            sell_price = Decimal(price)
            kind = OrderKind.RESTING
        else:
            sell_price = market_sell_price(best_bid)
            kind = OrderKind.IMMEDIATE_OR_CANCEL

        return TradePlan(
            conditionId=market.condition_id,
            question=market.question,
            outcome=outcome,
            amountUsd=usd_amount,
            wantedTokenId=wanted.token_id,
            unwantedTokenId=unwanted.token_id,
            wantedCurrentPrice=wanted.price,
            bestOpposingBid=best_bid,
            splitAmountUnits=str(to_base_units(usd_amount)),
            sellUnwantedAt=sell_price,
            orderKind=kind,
            negRisk=market.neg_risk,
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        wallet_name: str,
        market_id: str,
        outcome: Union[TradeOutcome, str],
        usd_amount: Decimal,
        price: Optional[Decimal] = None,
        dry_run: bool = True,
    ) -> TradeResult:
        """
        Plan and, unless dry_run, carry out the trade.

        Returns:
            TradeResult with the full step ledger. Status is COMPLETED,
            PARTIAL (stopped after on-chain effects), FAILED (stopped before
            any) or DRY_RUN.
        """
        ledger = StepLedger()
        plan = await self.plan(market_id, outcome, usd_amount, price)
        ledger.record(TradeStep.PLAN, StepSuccess(reference=plan.market_id))

        if dry_run:
            return TradeResult(
                status=TradeStatus.DRY_RUN,
                plan=plan,
                ledger=ledger,
                note="Re-run with --broadcast to execute. The wallet funds the signing identity, "
                     "which splits and sells the unwanted side.",
            )

        session = self.store.load_session(wallet_name)
        identity = SigningIdentity.load(self.store)
        if identity is None:
            raise MissingSession(message="No signing identity stored; run `setup` first")

        executor = self.executor_factory(identity)
        units = int(plan.split_amount_units)
        result = TradeResult(status=TradeStatus.FAILED, plan=plan, ledger=ledger, signer_address=identity.address)

        async def fund() -> StepSuccess:
            tx = TransactionBuilder.build_erc20_transfer(
                self.chain_id, session.wallet_address, contracts.USDC_E, identity.address, units,
                description=f"Fund signing identity with {plan.usd_amount} USDC.e",
            )
            return StepSuccess(reference=await self.custodial.send_transactions(session, [tx]))

        async def approve_spend() -> StepSuccess:
            txs = [
                TransactionBuilder.build_erc20_approve(
                    self.chain_id, identity.address, contracts.USDC_E, spender, MAX_UINT256,
                )
                for spender in contracts.collateral_spenders(plan.neg_risk)
            ]
            return await self._send_all(executor, txs)

        async def approve_custody() -> StepSuccess:
            txs = [
                TransactionBuilder.build_set_approval_for_all(
                    self.chain_id, identity.address, contracts.CTF, operator,
                )
                for operator in contracts.custody_operators(plan.neg_risk)
            ]
            return await self._send_all(executor, txs)

        async def split() -> StepSuccess:
            target = contracts.split_target_for(plan.neg_risk)
            if plan.neg_risk:
                tx = TransactionBuilder.build_neg_risk_split(
                    self.chain_id, identity.address, target, plan.market_id, units,
                )
            else:
                tx = TransactionBuilder.build_ctf_split(
                    self.chain_id, identity.address, target, contracts.USDC_E, plan.market_id, units,
                )
            sent = await executor.send(tx)
            return StepSuccess(reference=sent.tx_hash)

        credential_box = {}

        async def derive_credential() -> StepSuccess:
            credential = await self.signer.derive_credential(identity)
            credential_box["credential"] = credential
            return StepSuccess(reference=credential.api_key, details={"signer": credential.signer_address})

        async def submit_order() -> StepSuccess:
            credential = credential_box["credential"]
            order = build_sell_order(
                identity,
                plan.unwanted_token_id,
                units,
                plan.sell_price,
                contracts.exchange_for(plan.neg_risk),
            )
            body = order_request_body(order, credential.api_key, plan.order_type)
            headers = self.signer.sign_request(credential, "POST", "/order", body)
            response = await self.venue.post_order(body, headers)
            result.order_response = response
            return StepSuccess(
                reference=response.get("orderID") or response.get("orderId"),
                details={"status": response.get("status")} if response.get("status") else {},
            )

        steps: List[tuple] = [
            (TradeStep.FUND, fund),
            (TradeStep.APPROVE_SPEND, approve_spend),
            (TradeStep.APPROVE_CUSTODY, approve_custody),
            (TradeStep.SPLIT, split),
            (TradeStep.DERIVE_CREDENTIAL, derive_credential),
            (TradeStep.SUBMIT_ORDER, submit_order),
        ]

        try:
            for step, run in steps:
                if not await self._run_step(ledger, step, run):
                    break
        finally:
            await executor.close()

        return self._finalize(result, identity)

    async def _run_step(
        self,
        ledger: StepLedger,
        step: TradeStep,
        run: Callable[[], Awaitable[StepSuccess]],
    ) -> bool:
        logger.info(f"Trade step {step.value} starting")
        try:
            outcome = await run()
        except Exception as e:
            # Recorded, not raised: earlier steps may already be on-chain
            context = classify_error(e)
            ledger.record(step, StepFailure(error=str(e), category=context.category.value))
            logger.error(f"Trade step {step.value} failed: {e}")
            return False

        ledger.record(step, outcome)
        logger.info(f"Trade step {step.value} done: {outcome.reference}")
        return True

    async def _send_all(self, executor: TransactionExecutor, txs: list) -> StepSuccess:
        hashes = []
        for tx in txs:
            sent = await executor.send(tx)
            hashes.append(sent.tx_hash)
        return StepSuccess(reference=hashes[-1], details={"txHashes": hashes})

    def _finalize(self, result: TradeResult, identity: SigningIdentity) -> TradeResult:
        ledger = result.ledger
        failure = ledger.failure

        if failure is None:
            result.status = TradeStatus.COMPLETED
            result.note = (
                f"Holding {result.plan.outcome.value} tokens at {identity.address}; "
                f"unwanted side offered at {result.plan.sell_price} ({result.plan.order_kind.value})."
            )
            return result

        result.status = TradeStatus.PARTIAL if ledger.has_on_chain_effects else TradeStatus.FAILED

        if ledger.reference(TradeStep.SPLIT) is not None:
            result.tokens_held_by = identity.address
            result.note = (
                f"Split succeeded but the sell order was not placed. Both outcome tokens are held by "
                f"{identity.address}; sell the unwanted side manually."
            )
        elif result.status is TradeStatus.PARTIAL:
            result.note = (
                f"Stopped at {failure.step.value}. Completed steps were not rolled back; "
                f"funds remain with {identity.address}."
            )
        else:
            result.note = f"Stopped at {failure.step.value}; nothing was submitted on-chain."
        return result
