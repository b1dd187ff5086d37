"""Main application entry point for the MEV sandwich pipeline"""

import asyncio
import importlib
import signal
import sys
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import structlog
import uvicorn
from dotenv import load_dotenv

from mev_sandwich.api import create_app
from mev_sandwich.cache import MetadataCache
from mev_sandwich.config import AppConfig, Settings
from mev_sandwich.detectors.opportunity_scorer import OpportunityScorer
from mev_sandwich.detectors.profit_optimizer import ProfitOptimizer
from mev_sandwich.errors import ConfigurationError
from mev_sandwich.events import EventBus
from mev_sandwich.execution import AdmissionController, BundleManager, ExecutionOrchestrator
from mev_sandwich.interfaces import ChainClient, PendingTransactionFeed, PriceSource, Signer
from mev_sandwich.models import Chain
from mev_sandwich.monitoring.metrics import start_metrics_server
from mev_sandwich.pricing import GuardedPriceSource
from mev_sandwich.relays import build_relay_clients
from mev_sandwich.resilience import CircuitBreaker, RetryPolicy
from mev_sandwich.risk import RiskGate
from mev_sandwich.utils.logging import setup_logging

logger = structlog.get_logger()


@dataclass
class Collaborators:
    """Deployment-provided adapters for the out-of-process dependencies"""

    chain_clients: Dict[Chain, ChainClient]
    price_source: PriceSource
    signer: Signer
    feed: Optional[PendingTransactionFeed] = None


def load_collaborators(factory_path: str, config: AppConfig) -> Collaborators:
    """
    Resolve a ``package.module:function`` factory and call it with the config.

    Raises:
        ConfigurationError: if the path is empty, malformed or not importable
    """
    if not factory_path or ":" not in factory_path:
        raise ConfigurationError(
            "COLLABORATORS_FACTORY must name a 'module:function' returning Collaborators"
        )
    module_name, attr = factory_path.split(":", 1)
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"cannot load collaborators factory {factory_path}", cause=e) from e
    return factory(config)


class Application:
    """Wires the pipeline components and owns their lifecycle"""

    def __init__(
        self,
        config: AppConfig,
        orchestrator: ExecutionOrchestrator,
        event_bus: EventBus,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.event_bus = event_bus
        self.app = create_app(orchestrator)

        self._shutdown_event = asyncio.Event()
        self._logger = logger.bind(component="application")

    @classmethod
    def from_collaborators(
        cls,
        config: AppConfig,
        chain_clients: Mapping[Chain, ChainClient],
        price_source: PriceSource,
        signer: Signer,
        feed: Optional[PendingTransactionFeed] = None,
    ) -> "Application":
        """
        Build every pipeline component around the injected adapters.

        Args:
            config: Validated application configuration
            chain_clients: RPC client per enabled chain
            price_source: External price oracle
            signer: Key custody for the sandwich legs and relay auth
            feed: Pending transaction feed (optional; without it opportunities
                must be dispatched by the caller)

        Raises:
            ConfigurationError: if an enabled chain has no client
        """
        event_bus = EventBus()
        admission_config = config.admission
        resilience = config.resilience

        metadata_cache = MetadataCache(
            token_ttl=admission_config.token_cache_seconds,
            pool_ttl=admission_config.pool_cache_seconds,
            gas_ttl=admission_config.gas_cache_seconds,
            maxsize=admission_config.cache_size,
        )
        scorer = OpportunityScorer(
            config,
            chain_clients,
            metadata_cache=metadata_cache,
            event_bus=event_bus,
        )
        optimizer = ProfitOptimizer(config.optimizer, config.chains)
        risk_gate = RiskGate(config.risk, config.chains)
        relays = build_relay_clients(config, dict(chain_clients), signer)
        bundle_manager = BundleManager(config, relays, event_bus=event_bus)
        admission = AdmissionController(admission_config, metadata_cache=metadata_cache)
        guarded_prices = GuardedPriceSource(
            price_source,
            breaker=CircuitBreaker(
                name="price_oracle",
                failure_threshold=resilience.failure_threshold,
                timeout_seconds=resilience.reset_timeout_seconds,
            ),
            retry_policy=RetryPolicy(max_attempts=resilience.price_max_attempts),
            cache_seconds=resilience.price_cache_seconds,
        )
        orchestrator = ExecutionOrchestrator(
            config,
            optimizer=optimizer,
            risk_gate=risk_gate,
            bundle_manager=bundle_manager,
            admission=admission,
            price_source=guarded_prices,
            relays=relays,
            scorer=scorer,
            feed=feed,
            chain_clients=chain_clients,
            event_bus=event_bus,
        )
        return cls(config, orchestrator, event_bus)

    async def start(self) -> None:
        """Start metrics exposition and the orchestrator"""
        self._logger.info(
            "application_starting",
            chains=[c.value for c in self.config.enabled_chains()],
            paper_trading=self.config.paper_trading,
        )
        start_metrics_server(port=self.config.prometheus_port)
        await self.orchestrator.start()
        self._logger.info("application_started")

    async def stop(self) -> None:
        """Stop the orchestrator, letting in-flight executions finish"""
        self._logger.info("application_stopping")
        try:
            await self.orchestrator.stop()
        except Exception as e:
            self._logger.error(
                "application_stop_error",
                error=str(e),
                error_type=type(e).__name__,
            )
        self._logger.info("application_stopped")

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown"""
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int) -> None:
            self._logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
            self._shutdown_event.set()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum)

        self._logger.info("signal_handlers_registered")

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()


async def main() -> None:
    """Main application entry point"""
    load_dotenv()
    settings = Settings()
    config = settings.get_app_config()
    setup_logging(config.log_level)

    collaborators = load_collaborators(settings.collaborators_factory, config)
    app = Application.from_collaborators(
        config,
        chain_clients=collaborators.chain_clients,
        price_source=collaborators.price_source,
        signer=collaborators.signer,
        feed=collaborators.feed,
    )

    try:
        app.setup_signal_handlers()
        await app.start()

        server = uvicorn.Server(
            uvicorn.Config(
                app.app,
                host="0.0.0.0",
                port=config.health_port,
                log_level=config.log_level.lower(),
                access_log=False,
            )
        )
        server.install_signal_handlers = lambda: None
        server_task = asyncio.create_task(server.serve())
        logger.info("health_server_started", port=config.health_port)

        await app.wait_for_shutdown()

        logger.info("shutting_down_health_server")
        server.should_exit = True
        await server_task
        await app.stop()
        logger.info("application_shutdown_complete")
    except Exception as e:
        logger.error(
            "application_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        await app.stop()
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("application_terminated")
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        sys.exit(2)
