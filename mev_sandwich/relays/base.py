"""Relay client interface and the bundle record it produces"""

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from mev_sandwich.errors import RelayConnectionError
from mev_sandwich.interfaces import ChainClient, Signer
from mev_sandwich.models import Chain, ExecutionParams
from mev_sandwich.relays.transport import RelayTransport

logger = structlog.get_logger()


class BundleStatus(str, Enum):
    """Bundle lifecycle states"""

    CREATED = "created"
    SUBMITTED = "submitted"
    SIMULATED = "simulated"
    INCLUDED = "included"
    LANDED = "landed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self in (BundleStatus.INCLUDED, BundleStatus.LANDED)


TERMINAL_STATUSES = frozenset(
    {BundleStatus.INCLUDED, BundleStatus.LANDED, BundleStatus.FAILED, BundleStatus.EXPIRED}
)


@dataclass
class Bundle:
    """
    Ordered front-run / victim / back-run transaction set for one relay.

    Owned by the bundle lifecycle manager until it reaches a terminal status.
    """

    bundle_id: str
    chain: Chain
    relay: str
    execution_id: str
    victim_tx_hash: str
    transactions: List[str]
    target_block: int
    tip: int
    bid_multiplier: Decimal
    estimated_profit_usd: Decimal
    front_run_tx_hash: Optional[str] = None
    relay_bundle_id: Optional[str] = None
    status: BundleStatus = BundleStatus.CREATED
    realized_profit_usd: Optional[Decimal] = None
    gas_used: Optional[int] = None
    failure_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamps: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.timestamps.setdefault(self.status.value, time.time())

    @staticmethod
    def new_id(chain: Chain) -> str:
        return f"{chain.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "chain": self.chain.value,
            "relay": self.relay,
            "execution_id": self.execution_id,
            "victim_tx_hash": self.victim_tx_hash,
            "relay_bundle_id": self.relay_bundle_id,
            "target_block": self.target_block,
            "tip": self.tip,
            "bid_multiplier": float(self.bid_multiplier),
            "status": self.status.value,
            "estimated_profit_usd": float(self.estimated_profit_usd),
            "realized_profit_usd": (
                float(self.realized_profit_usd) if self.realized_profit_usd is not None else None
            ),
            "gas_used": self.gas_used,
            "failure_reason": self.failure_reason,
            "timestamps": dict(self.timestamps),
        }


@dataclass(frozen=True)
class SimulationOutcome:
    """Relay-side simulation of a bundle"""

    success: bool
    gas_used: int = 0
    profit_native: Optional[Decimal] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class StatusReport:
    """One poll of a submitted bundle's status"""

    status: BundleStatus
    gas_used: Optional[int] = None
    block: Optional[int] = None
    reason: Optional[str] = None


class RelayClient(ABC):
    """
    One private relay protocol.

    ``create_bundle`` builds and signs the chain-specific transactions,
    ``simulate_bundle`` and ``submit_bundle`` call the relay, and
    ``get_bundle_status`` is polled every ``poll_interval`` seconds until a
    terminal status is reported.
    """

    name: str = "relay"
    chain: Chain
    poll_interval: float = 1.0

    def __init__(self, chain_client: ChainClient, signer: Signer, transport: RelayTransport):
        self.chain_client = chain_client
        self.signer = signer
        self.transport = transport
        self._logger = logger.bind(component="relay_client", relay=self.name)

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    async def connect(self) -> None:
        await self.transport.connect()
        self._logger.info("relay_connected", chain=self.chain.value)

    async def disconnect(self) -> None:
        await self.transport.close()
        self._logger.info("relay_disconnected", chain=self.chain.value)

    def _require_connection(self) -> None:
        if not self.is_connected:
            raise RelayConnectionError(f"{self.name} relay is not connected", chain=self.chain.value)

    @abstractmethod
    async def create_bundle(self, params: ExecutionParams, bid_multiplier: Decimal) -> Bundle:
        """Build and sign the sandwich transactions for one execution"""

    @abstractmethod
    async def simulate_bundle(self, bundle: Bundle) -> SimulationOutcome:
        """Ask the relay to simulate the bundle against current state"""

    @abstractmethod
    async def submit_bundle(self, bundle: Bundle) -> str:
        """Submit the bundle and return the relay's identifier for it"""

    @abstractmethod
    async def get_bundle_status(self, bundle: Bundle) -> StatusReport:
        """Poll the relay / chain once for the bundle's status"""
