"""Unit tests for monitoring metrics"""

from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from mev_sandwich.config import BiddingConfig
from mev_sandwich.execution.bidding import calculate_bid_multiplier
from mev_sandwich.models import Chain
from mev_sandwich.monitoring import metrics
from mev_sandwich.resilience import CircuitBreaker


class TestMetricsEmission:
    """Test that metrics are properly emitted"""

    def test_opportunities_rejected_emission(self):
        """Test opportunities_rejected counter emission"""
        metrics.opportunities_rejected.labels(chain="ethereum", reason="capacity").inc()

        metric_output = metrics.get_metrics().decode("utf-8")
        assert 'sandwich_opportunities_rejected_total{chain="ethereum",reason="capacity"}' in metric_output

    def test_execution_stage_latency_emission(self):
        """Test execution_stage_latency histogram emission"""
        metrics.execution_stage_latency.labels(chain="bsc", stage="optimize").observe(0.02)

        metric_output = metrics.get_metrics().decode("utf-8")
        assert 'sandwich_execution_stage_latency_seconds_count{chain="bsc",stage="optimize"}' in metric_output

    def test_executions_in_flight_emission(self):
        metrics.executions_in_flight.set(3)

        metric_output = metrics.get_metrics().decode("utf-8")
        assert "sandwich_executions_in_flight 3.0" in metric_output

    def test_bundles_terminal_emission(self):
        metrics.bundles_terminal.labels(chain="solana", relay="jito", status="landed").inc()

        metric_output = metrics.get_metrics().decode("utf-8")
        assert 'sandwich_bundles_terminal_total{chain="solana",relay="jito",status="landed"}' in metric_output

    def test_relay_errors_emission(self):
        metrics.relay_errors.labels(relay="flashbots", error_type="http_503").inc()

        metric_output = metrics.get_metrics().decode("utf-8")
        assert 'sandwich_relay_errors_total{relay="flashbots",error_type="http_503"}' in metric_output

    def test_risk_denials_emission(self):
        metrics.risk_denials.labels(chain="ethereum", rule="max_gas_price").inc()

        metric_output = metrics.get_metrics().decode("utf-8")
        assert 'sandwich_risk_denials_total{chain="ethereum",rule="max_gas_price"}' in metric_output


class TestComponentMetrics:
    """Test components publish their metrics"""

    def test_circuit_breaker_state_gauge(self):
        """Test breaker transitions are reflected in the state gauge"""
        breaker = CircuitBreaker(name="metrics_test_dependency", failure_threshold=1)
        assert 'sandwich_circuit_breaker_state{dependency="metrics_test_dependency"} 0.0' in (
            metrics.get_metrics().decode("utf-8")
        )

        breaker.record_failure()

        assert 'sandwich_circuit_breaker_state{dependency="metrics_test_dependency"} 2.0' in (
            metrics.get_metrics().decode("utf-8")
        )

    def test_bid_multiplier_observed(self):
        labels = {"chain": "bsc"}
        before = REGISTRY.get_sample_value("sandwich_bid_multiplier_sum", labels) or 0.0

        calculate_bid_multiplier(BiddingConfig(), Decimal("12"), Decimal("10000"), chain=Chain.BSC)

        after = REGISTRY.get_sample_value("sandwich_bid_multiplier_sum", labels)
        assert after == pytest.approx(before + 1.5)


def test_content_type():
    assert metrics.get_content_type().startswith("text/plain")
