"""
Prometheus metrics: order lifecycle outcomes and rejected requests.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created in the active state",
)
orders_completed_total = Counter(
    "orders_completed_total",
    "Total orders moved from active to complete",
)
order_items_changed_total = Counter(
    "order_items_changed_total",
    "Total order item mutations",
    ["operation"],  # add | update | delete
)
requests_rejected_total = Counter(
    "requests_rejected_total",
    "Total requests rejected with a structured error",
    ["kind"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
