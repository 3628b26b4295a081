from typing import Optional
from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest
from prometheus_client.core import CollectorRegistry
import logging

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

service_calls_total = Counter(
    'port_service_calls_total',
    'Total service method calls',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

service_call_duration_seconds = Histogram(
    'port_service_call_duration_seconds',
    'Service method duration in seconds',
    ['service', 'method'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=REGISTRY
)

allocation_outcomes_total = Counter(
    'port_allocation_outcomes_total',
    'Allocation attempts by outcome',
    ['outcome'],
    registry=REGISTRY
)

allocation_conflicts_total = Counter(
    'port_allocation_conflicts_total',
    'Compare-and-set races lost while assigning a port',
    registry=REGISTRY
)

available_ports_gauge = Gauge(
    'port_available_ports',
    'Ports in AVAILABLE state at the last availability check',
    registry=REGISTRY
)

system_info = Info(
    'port_allocator_info',
    'System information',
    registry=REGISTRY
)


class PrometheusMetricsCollector:
    """Thin facade over the module-level Prometheus instruments"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'service': 'port-allocator'
        })

    def record_service_call(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool,
    ):
        status = 'success' if success else 'error'
        service_calls_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()
        service_call_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

    def record_allocation_outcome(self, outcome: str, lost_races: int = 0):
        allocation_outcomes_total.labels(outcome=outcome).inc()
        if lost_races:
            allocation_conflicts_total.inc(lost_races)

    def update_available_ports(self, count: Optional[int]):
        if count is not None:
            available_ports_gauge.set(count)

    def get_prometheus_metrics(self) -> bytes:
        return generate_latest(REGISTRY)


prometheus_collector = PrometheusMetricsCollector()
