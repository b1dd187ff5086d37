"""Data models shared by the scoring, optimization, risk and execution stages"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Chain(str, Enum):
    """Supported chain families"""

    ETHEREUM = "ethereum"
    SOLANA = "solana"
    BSC = "bsc"

    @property
    def is_evm(self) -> bool:
        return self is not Chain.SOLANA


class ErrorKind(str, Enum):
    """Why an opportunity did not end in a landed bundle"""

    CAPACITY = "capacity"
    STOPPED = "stopped"
    ADMISSION = "admission"
    PRICE_DATA = "price_data"
    CIRCUIT_OPEN = "circuit_open"
    UNPROFITABLE = "unprofitable"
    RISK_DENIED = "risk_denied"
    VALIDATION = "validation"
    DUPLICATE = "duplicate"
    EXECUTION = "execution"
    RELAY_REJECTED = "relay_rejected"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


@dataclass(frozen=True)
class PriceQuote:
    """USD price with the agreement score of the sources behind it"""

    price: Decimal
    confidence: float
    sources: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TokenInfo:
    """Token metadata used for filtering and unit conversion"""

    address: str
    symbol: str
    decimals: int
    price_usd: Decimal
    liquidity_usd: Decimal = Decimal("0")
    volume_24h_usd: Decimal = Decimal("0")
    is_honeypot: bool = False
    tax_buy: Decimal = Decimal("0")
    tax_sell: Decimal = Decimal("0")
    verified: bool = False


@dataclass(frozen=True)
class PoolSnapshot:
    """Constant-product pool state at detection time (human units)"""

    address: str
    dex: str
    token0: str
    token1: str
    reserve0: Decimal
    reserve1: Decimal
    fee_bps: int = 30
    liquidity_usd: Decimal = Decimal("0")
    timestamp: float = field(default_factory=time.time)

    def reserves_for(self, token_in: str) -> Tuple[Decimal, Decimal]:
        """Return (reserve_in, reserve_out) for a swap that sells token_in"""
        if token_in.lower() == self.token0.lower():
            return self.reserve0, self.reserve1
        return self.reserve1, self.reserve0


@dataclass(frozen=True)
class DecodedSwap:
    """Swap intent extracted from a victim transaction"""

    method: str
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int
    path: Tuple[str, ...] = ()
    deadline: Optional[int] = None
    fee_tier: Optional[int] = None
    dex: Optional[str] = None
    pool_address: Optional[str] = None


@dataclass(frozen=True)
class PendingTransaction:
    """A not-yet-confirmed transaction as delivered by the mempool feed"""

    tx_hash: str
    chain: Chain
    raw_transaction: str
    to: str = ""
    data: str = "0x"
    value: int = 0
    gas_limit: int = 0
    gas_price: int = 0
    sender: str = ""
    recent_blockhash: Optional[str] = None
    decoded_swap: Optional[DecodedSwap] = None
    received_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class VictimTransaction:
    """Raw fields of the transaction being sandwiched"""

    tx_hash: str
    to: str
    data: str
    value: int
    gas_limit: int
    gas_price: int
    raw: str


@dataclass(frozen=True)
class SandwichOpportunity:
    """A scored candidate. Created by the scorer and consumed exactly once."""

    victim: VictimTransaction
    chain: Chain
    dex: str
    token_in: str
    token_out: str
    amount_in: Decimal
    min_amount_out: Decimal
    pool: PoolSnapshot
    gas_price_gwei: Decimal
    estimated_profit: Decimal
    profitability: Decimal
    confidence: float
    slippage: Decimal
    mev_score: float
    trade_value_usd: Decimal
    token_in_decimals: int = 18
    token_out_decimals: int = 18
    expires_at: Optional[float] = None
    detected_at: float = field(default_factory=time.time)

    @property
    def victim_tx_hash(self) -> str:
        return self.victim.tx_hash

    def time_to_expiry(self, now: Optional[float] = None) -> float:
        """Seconds left before the victim's own deadline (inf when unknown)"""
        if self.expires_at is None:
            return float("inf")
        return self.expires_at - (now if now is not None else time.time())


@dataclass(frozen=True)
class ProfitOptimizationResult:
    """Outcome of sizing the front-run for one opportunity"""

    optimal_front_run_amount: Decimal
    front_run_output: Decimal
    max_profit_usd: Decimal
    raw_profit_usd: Decimal
    gross_profit_tokens: Decimal
    gas_cost_usd: Decimal
    profitability: Decimal
    gas_efficiency: Decimal
    risk_adjusted_return: Decimal
    price_confidence: float
    execution_confidence: float
    risk_score: float
    price_impact: Decimal
    victim_loss_usd: Decimal = Decimal("0")
    valid: bool = True
    clamped: bool = False
    reason: Optional[str] = None

    @property
    def is_profitable(self) -> bool:
        return self.valid and self.max_profit_usd > 0


@dataclass(frozen=True)
class RiskCandidate:
    """Everything the risk gate needs to know about one prospective trade"""

    execution_id: str
    chain: Chain
    position_size: Decimal
    position_size_usd: Decimal
    expected_profit_usd: Decimal
    price_impact: Decimal
    slippage: Decimal
    pool_liquidity_usd: Decimal
    gas_price_gwei: Decimal
    confidence: float
    token_in: str = ""
    token_out: str = ""


@dataclass(frozen=True)
class RiskAssessment:
    """Risk gate verdict"""

    allowed: bool
    reasons: Tuple[str, ...]
    risk_score: float
    position_size_limit: Decimal
    recommendations: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionParams:
    """Immutable execution instructions handed to the bundle lifecycle manager"""

    execution_id: str
    opportunity: SandwichOpportunity
    front_run_amount: Decimal
    expected_front_run_output: Decimal
    expected_profit_usd: Decimal
    expected_profit_native: Decimal
    profitability: Decimal
    max_gas_price_gwei: Decimal
    max_slippage: Decimal
    deadline: float
    min_profit: Decimal
    simulation_only: bool = False

    @property
    def chain(self) -> Chain:
        return self.opportunity.chain

    def remaining(self, now: Optional[float] = None) -> float:
        return self.deadline - (now if now is not None else time.time())


@dataclass
class LatencyBreakdown:
    """Milliseconds spent in each phase of one execution"""

    detection_ms: float = 0.0
    simulation_ms: float = 0.0
    execution_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class ExecutionResult:
    """Terminal outcome of one opportunity's pass through the pipeline"""

    execution_id: str
    chain: Chain
    success: bool
    victim_tx_hash: str = ""
    bundle_id: Optional[str] = None
    status: Optional[str] = None
    estimated_profit_usd: Decimal = Decimal("0")
    actual_profit_usd: Optional[Decimal] = None
    gas_used: Optional[int] = None
    simulated_only: bool = False
    latency: LatencyBreakdown = field(default_factory=LatencyBreakdown)
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    reasons: List[str] = field(default_factory=list)

    @classmethod
    def rejected(
        cls,
        execution_id: str,
        opportunity: SandwichOpportunity,
        kind: ErrorKind,
        error: str,
        reasons: Optional[List[str]] = None,
    ) -> "ExecutionResult":
        return cls(
            execution_id=execution_id,
            chain=opportunity.chain,
            success=False,
            victim_tx_hash=opportunity.victim_tx_hash,
            error_kind=kind,
            error=error,
            reasons=list(reasons or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "chain": self.chain.value,
            "success": self.success,
            "victim_tx_hash": self.victim_tx_hash,
            "bundle_id": self.bundle_id,
            "status": self.status,
            "estimated_profit_usd": float(self.estimated_profit_usd),
            "actual_profit_usd": (
                float(self.actual_profit_usd) if self.actual_profit_usd is not None else None
            ),
            "gas_used": self.gas_used,
            "simulated_only": self.simulated_only,
            "latency_ms": {
                "detection": self.latency.detection_ms,
                "simulation": self.latency.simulation_ms,
                "execution": self.latency.execution_ms,
                "total": self.latency.total_ms,
            },
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "reasons": list(self.reasons),
        }
