"""
Domain models for the decision-to-execution pipeline.

Field names are snake_case in Python and serialise to camelCase
(``model_dump(by_alias=True)``) for the HTTP surface.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value: Any) -> "Trend":
        """
        Normalise scanner trend/signal labels.

        Accepts the enum values in any case plus the textual signals the
        conviction scanner emits ("Strong Buy", "Buy", "Sell", ...).
        """
        if isinstance(value, Trend):
            return value
        text = str(value or "").strip().lower()
        if text in ("bullish", "strong buy", "buy"):
            return cls.BULLISH
        if text in ("bearish", "strong sell", "sell"):
            return cls.BEARISH
        return cls.NEUTRAL


class TradeStatus(str, Enum):
    SUBMITTED = "submitted"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    NO_CANDIDATES = "no_candidates"
    MAX_POSITIONS = "max_positions"
    MARKET_CLOSED = "market_closed"
    DISABLED = "disabled"
    ACCOUNT_UNAVAILABLE = "account_unavailable"
    SCAN_FAILED = "scan_failed"
    BUSY = "busy"


class Account(ApiModel):
    equity: float = Field(ge=0)
    buying_power: float = Field(ge=0)
    cash: float = Field(ge=0)
    portfolio_value: float = Field(ge=0)
    account_number: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            equity=float(data["equity"]),
            buying_power=float(data["buying_power"]),
            cash=max(float(data["cash"]), 0.0),
            portfolio_value=float(data["portfolio_value"]),
            account_number=data.get("account_number"),
        )


class Position(ApiModel):
    symbol: str
    qty: float = Field(gt=0)
    avg_entry_price: float
    current_price: float
    market_value: float
    unrealized_pl: float = Field(alias="unrealizedPL")
    unrealized_pl_percent: float = Field(alias="unrealizedPLPercent")

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Position":
        return cls(
            symbol=str(data["symbol"]).upper(),
            qty=abs(float(data["qty"])),
            avg_entry_price=float(data["avg_entry_price"]),
            current_price=float(data["current_price"]),
            market_value=float(data["market_value"]),
            unrealized_pl=float(data["unrealized_pl"]),
            unrealized_pl_percent=float(data["unrealized_plpc"]) * 100,
        )


class StopLoss(ApiModel):
    stop_price: float


class TakeProfit(ApiModel):
    limit_price: float


class Order(ApiModel):
    id: str
    symbol: str
    side: OrderSide
    qty: float
    status: str
    order_type: Optional[str] = None
    order_class: Optional[str] = None
    filled_qty: float = 0.0
    filled_avg_price: Optional[float] = None
    created_at: Optional[str] = None
    stop_loss: Optional[StopLoss] = None
    take_profit: Optional[TakeProfit] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Order":
        stop_loss = None
        take_profit = None
        # Bracket exit legs come back as child orders
        for leg in data.get("legs") or []:
            if leg.get("stop_price") is not None:
                stop_loss = StopLoss(stop_price=float(leg["stop_price"]))
            elif leg.get("limit_price") is not None:
                take_profit = TakeProfit(limit_price=float(leg["limit_price"]))

        filled_avg = data.get("filled_avg_price")
        return cls(
            id=str(data["id"]),
            symbol=str(data["symbol"]).upper(),
            side=OrderSide(str(data.get("side", "buy")).lower()),
            qty=float(data.get("qty") or 0),
            status=str(data.get("status", "")),
            order_type=data.get("type") or data.get("order_type"),
            order_class=data.get("order_class") or None,
            filled_qty=float(data.get("filled_qty") or 0),
            filled_avg_price=float(filled_avg) if filled_avg is not None else None,
            created_at=data.get("created_at"),
            stop_loss=stop_loss,
            take_profit=take_profit,
        )


class CandidatePick(ApiModel):
    """A ranked candidate produced by the signal source. Immutable."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    symbol: str
    score: float
    trend: Trend = Trend.NEUTRAL
    sector: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def _normalise_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be empty")
        return value

    @field_validator("trend", mode="before")
    @classmethod
    def _normalise_trend(cls, value: Any) -> Trend:
        return Trend.parse(value)


class TradeDecision(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    symbol: str
    qty: int = Field(gt=0)
    estimated_cost: float
    stop_price: float
    limit_price: float


class ExecutionResult(ApiModel):
    symbol: str
    status: TradeStatus
    reason: Optional[str] = None
    order_id: Optional[str] = None
    qty: Optional[int] = None
    estimated_cost: Optional[float] = None
    stop_price: Optional[float] = None
    limit_price: Optional[float] = None
    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None


class RunSummary(ApiModel):
    status: RunStatus
    message: str
    trigger: str = "manual"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    market_open: Optional[bool] = None
    buying_power: Optional[float] = None
    current_positions: Optional[int] = None
    max_positions: Optional[int] = None
    trades: List[ExecutionResult] = Field(default_factory=list)
    decisions: List[TradeDecision] = Field(default_factory=list)
    notification_sent: Optional[bool] = None

    @property
    def success(self) -> bool:
        return self.status in (
            RunStatus.COMPLETED,
            RunStatus.NO_CANDIDATES,
            RunStatus.MAX_POSITIONS,
        )

    def count(self, status: TradeStatus) -> int:
        return sum(1 for t in self.trades if t.status == status)

    def counts(self) -> Dict[str, int]:
        return {
            "attempted": len(self.trades),
            "submitted": self.count(TradeStatus.SUBMITTED),
            "skipped": self.count(TradeStatus.SKIPPED),
            "failed": self.count(TradeStatus.FAILED),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["success"] = self.success
        data["summary"] = self.counts()
        return data


class LiquidationSummary(ApiModel):
    orders_cancelled: int = 0
    orders_failed: List[str] = Field(default_factory=list)
    positions_closed: int = 0
    positions_failed: List[str] = Field(default_factory=list)
    positions_pending: int = 0
    positions_unavailable: bool = False
    market_open: bool = False
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return not (self.orders_failed or self.positions_failed or self.positions_unavailable)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["success"] = self.success
        return data
