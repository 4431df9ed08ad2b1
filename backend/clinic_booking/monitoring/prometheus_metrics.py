"""
Prometheus metrics module for the clinic booking core.

Service timings come from ``@BaseService.measure_operation``; the domain
counters below track reservation, booking, check-in and sweep outcomes.
"""

from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "clinic_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "clinic_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "clinic_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

slot_reservations_total = Counter(
    "clinic_slot_reservations_total",
    "Slot reservation attempts by outcome",
    ["outcome"],  # granted | denied_reserved | denied_booked | released
    registry=REGISTRY,
)

booking_submissions_total = Counter(
    "clinic_booking_submissions_total",
    "Booking submissions by outcome",
    ["outcome"],  # booked | conflict | no_alternatives | infrastructure_error
    registry=REGISTRY,
)

booking_retries_total = Counter(
    "clinic_booking_retries_total",
    "Transient infrastructure retries inside booking operations",
    ["operation"],
    registry=REGISTRY,
)

checkins_total = Counter(
    "clinic_checkins_total",
    "Check-in attempts by path and outcome",
    ["path", "outcome"],  # path: token | manual
    registry=REGISTRY,
)

no_show_sweep_total = Counter(
    "clinic_no_show_sweep_bookings_total",
    "Bookings visited by the no-show sweep by outcome",
    ["outcome"],  # marked | skipped | failed
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade so call sites never touch metric objects directly."""

    def record_service_operation(
        self,
        service: str,
        operation: str,
        duration: float,
        status: str,
        error_type: Optional[str] = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    def record_reservation(self, outcome: str) -> None:
        slot_reservations_total.labels(outcome=outcome).inc()

    def record_submission(self, outcome: str) -> None:
        booking_submissions_total.labels(outcome=outcome).inc()

    def record_retry(self, operation: str) -> None:
        booking_retries_total.labels(operation=operation).inc()

    def record_checkin(self, path: str, outcome: str) -> None:
        checkins_total.labels(path=path, outcome=outcome).inc()

    def record_sweep(self, outcome: str, count: int = 1) -> None:
        if count:
            no_show_sweep_total.labels(outcome=outcome).inc(count)

    def get_metrics(self) -> bytes:
        return generate_latest(REGISTRY)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
