"""Prometheus metrics for pipeline health and performance"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest, start_http_server

# Detection Metrics
opportunities_detected = Counter(
    'sandwich_opportunities_detected_total',
    'Total number of sandwich opportunities emitted by the scorer',
    ['chain', 'dex']
)

opportunities_rejected = Counter(
    'sandwich_opportunities_rejected_total',
    'Total number of opportunities dropped before submission',
    ['chain', 'reason']
)

scoring_latency = Histogram(
    'sandwich_scoring_latency_seconds',
    'Time spent scoring a pending transaction',
    ['chain'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5)
)

# Execution Metrics
executions_total = Counter(
    'sandwich_executions_total',
    'Total number of executions by terminal outcome',
    ['chain', 'outcome']
)

executions_in_flight = Gauge(
    'sandwich_executions_in_flight',
    'Number of executions currently holding a slot'
)

execution_stage_latency = Histogram(
    'sandwich_execution_stage_latency_seconds',
    'Latency of each execution stage in seconds',
    ['chain', 'stage'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0)
)

realized_profit_usd = Counter(
    'sandwich_realized_profit_usd_total',
    'Cumulative profit of landed bundles in USD',
    ['chain']
)

# Relay Metrics
bundles_submitted = Counter(
    'sandwich_bundles_submitted_total',
    'Total number of bundles submitted to relays',
    ['chain', 'relay']
)

bundles_terminal = Counter(
    'sandwich_bundles_terminal_total',
    'Total number of bundles reaching a terminal status',
    ['chain', 'relay', 'status']
)

relay_request_latency = Histogram(
    'sandwich_relay_request_latency_seconds',
    'Relay JSON-RPC request latency in seconds',
    ['relay', 'method'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
)

relay_errors = Counter(
    'sandwich_relay_errors_total',
    'Total number of relay errors',
    ['relay', 'error_type']
)

bid_multiplier = Histogram(
    'sandwich_bid_multiplier',
    'Competition-aware bid multiplier applied to base bids',
    ['chain'],
    buckets=(1.0, 1.2, 1.5, 1.8, 2.0, 2.5, 3.0)
)

# Resilience Metrics
circuit_breaker_state = Gauge(
    'sandwich_circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['dependency']
)

retry_attempts = Counter(
    'sandwich_retry_attempts_total',
    'Total number of retried operations',
    ['operation']
)

price_lookups = Counter(
    'sandwich_price_lookups_total',
    'Price lookups by outcome',
    ['chain', 'outcome']
)

# Risk / Admission Metrics
risk_score = Histogram(
    'sandwich_risk_score',
    'Risk score (0-100) of assessed opportunities',
    ['chain'],
    buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100)
)

risk_denials = Counter(
    'sandwich_risk_denials_total',
    'Risk gate denials by rule',
    ['chain', 'rule']
)

emergency_stop_active = Gauge(
    'sandwich_emergency_stop_active',
    'Whether the kill switch is engaged (1) or not (0)'
)

admission_success_rate = Gauge(
    'sandwich_admission_success_rate',
    'Rolling execution success rate per chain',
    ['chain']
)

admission_cache_hits = Counter(
    'sandwich_admission_cache_hits_total',
    'Admission controller cache lookups by cache and result',
    ['cache', 'result']
)


# API Metrics
api_requests_total = Counter(
    'sandwich_api_requests_total',
    'Total number of health API requests',
    ['endpoint', 'method', 'status']
)

api_request_latency = Histogram(
    'sandwich_api_request_latency_seconds',
    'Health API request latency in seconds',
    ['endpoint', 'method'],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5)
)


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default 9090)
    """
    start_http_server(port)
