"""
Trade orchestration models: the plan, the step ledger and the result.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ...providers.polymarket.models import OrderType


class TradeOutcome(str, Enum):
    YES = "YES"
    NO = "NO"


class OrderKind(str, Enum):
    """How the unwanted side is sold."""

    IMMEDIATE_OR_CANCEL = "immediate-or-cancel"
    RESTING = "resting"

    @property
    def order_type(self) -> OrderType:
        return OrderType.FOK if self is OrderKind.IMMEDIATE_OR_CANCEL else OrderType.GTC


class TradePlan(BaseModel):
    """Everything decided before the first irreversible step."""

    market_id: str = Field(..., alias="conditionId")
    question: str = Field("")
    outcome: TradeOutcome
    usd_amount: Decimal = Field(..., alias="amountUsd")
    wanted_token_id: str = Field(..., alias="wantedTokenId")
    unwanted_token_id: str = Field(..., alias="unwantedTokenId")
    wanted_current_price: Optional[Decimal] = Field(None, alias="wantedCurrentPrice")
    best_opposing_bid: Optional[Decimal] = Field(None, alias="bestOpposingBid")
    split_amount_units: str = Field(..., alias="splitAmountUnits", description="USDC.e base units, decimal string")
    sell_price: Decimal = Field(..., alias="sellUnwantedAt")
    order_kind: OrderKind = Field(..., alias="orderKind")
    neg_risk: bool = Field(False, alias="negRisk")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def order_type(self) -> OrderType:
        return self.order_kind.order_type

    def to_output(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json")
        data["orderType"] = self.order_type.value
        return data


class TradeStep(str, Enum):
    PLAN = "plan"
    FUND = "fund"
    APPROVE_SPEND = "approve_spend"
    APPROVE_CUSTODY = "approve_custody"
    SPLIT = "split"
    DERIVE_CREDENTIAL = "derive_credential"
    SUBMIT_ORDER = "submit_order"


# Steps whose success leaves state on-chain
ON_CHAIN_STEPS = {TradeStep.FUND, TradeStep.APPROVE_SPEND, TradeStep.APPROVE_CUSTODY, TradeStep.SPLIT}


@dataclass(frozen=True)
class StepSuccess:
    reference: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepFailure:
    error: str
    category: str = "unknown"


StepOutcome = Union[StepSuccess, StepFailure]


@dataclass(frozen=True)
class LedgerEntry:
    step: TradeStep
    outcome: StepOutcome

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, StepSuccess)

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.outcome, StepSuccess):
            entry = {"step": self.step.value, "ok": True, "reference": self.outcome.reference}
            if self.outcome.details:
                entry["details"] = self.outcome.details
            return entry
        return {
            "step": self.step.value,
            "ok": False,
            "error": self.outcome.error,
            "category": self.outcome.category,
        }


class StepLedger:
    """Append-only record of what each step did. Entries are never rewritten."""

    def __init__(self):
        self._entries: List[LedgerEntry] = []

    def record(self, step: TradeStep, outcome: StepOutcome) -> LedgerEntry:
        if any(e.step == step for e in self._entries):
            raise ValueError(f"Step {step.value} already recorded")
        if self._entries and not self._entries[-1].ok:
            raise ValueError("Cannot record a step after a failure")
        entry = LedgerEntry(step, outcome)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> List[LedgerEntry]:
        return list(self._entries)

    def get(self, step: TradeStep) -> Optional[LedgerEntry]:
        for entry in self._entries:
            if entry.step == step:
                return entry
        return None

    def reference(self, step: TradeStep) -> Optional[str]:
        entry = self.get(step)
        if entry is not None and isinstance(entry.outcome, StepSuccess):
            return entry.outcome.reference
        return None

    @property
    def failure(self) -> Optional[LedgerEntry]:
        for entry in self._entries:
            if not entry.ok:
                return entry
        return None

    @property
    def has_on_chain_effects(self) -> bool:
        return any(e.ok and e.step in ON_CHAIN_STEPS for e in self._entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]


class TradeStatus(str, Enum):
    DRY_RUN = "dry_run"
    COMPLETED = "completed"
    PARTIAL = "partial"      # failed after on-chain effects
    FAILED = "failed"        # failed before any on-chain effect


@dataclass
class TradeResult:
    status: TradeStatus
    plan: TradePlan
    ledger: StepLedger
    signer_address: Optional[str] = None
    order_response: Optional[Dict[str, Any]] = None
    tokens_held_by: Optional[str] = None
    note: str = ""

    @property
    def fund_tx_hash(self) -> Optional[str]:
        return self.ledger.reference(TradeStep.FUND)

    @property
    def approve_tx_hash(self) -> Optional[str]:
        return self.ledger.reference(TradeStep.APPROVE_SPEND)

    @property
    def custody_approve_tx_hash(self) -> Optional[str]:
        return self.ledger.reference(TradeStep.APPROVE_CUSTODY)

    @property
    def split_tx_hash(self) -> Optional[str]:
        return self.ledger.reference(TradeStep.SPLIT)

    @property
    def order_id(self) -> Optional[str]:
        return self.ledger.reference(TradeStep.SUBMIT_ORDER)

    @property
    def order_error(self) -> Optional[str]:
        failure = self.ledger.failure
        if failure is not None and failure.step in (TradeStep.DERIVE_CREDENTIAL, TradeStep.SUBMIT_ORDER):
            return failure.outcome.error
        return None

    @property
    def error(self) -> Optional[str]:
        failure = self.ledger.failure
        return failure.outcome.error if failure is not None else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ok": self.status in (TradeStatus.COMPLETED, TradeStatus.DRY_RUN),
            "status": self.status.value,
            "dryRun": self.status is TradeStatus.DRY_RUN,
            **self.plan.to_output(),
        }
        if self.status is not TradeStatus.DRY_RUN:
            data.update({
                "signerAddress": self.signer_address,
                "fundTxHash": self.fund_tx_hash,
                "approveTxHash": self.approve_tx_hash,
                "custodyApproveTxHash": self.custody_approve_tx_hash,
                "splitTxHash": self.split_tx_hash,
                "orderId": self.order_id,
                "orderError": self.order_error,
                "error": self.error,
                "tokensHeldBy": self.tokens_held_by,
            })
            if self.order_response is not None:
                data["orderStatus"] = self.order_response.get("status")
        data["steps"] = self.ledger.to_list()
        if self.note:
            data["note"] = self.note
        return data
