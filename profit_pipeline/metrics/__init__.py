"""
Metrics Derivation Module
"""
from .executor import BoundedExecutor, ExecutorStats
from .jobs import (
    METRICS_JOBS,
    MetricsJobRunner,
    compute_customer_ltv,
    compute_product_performance,
    compute_profit_metrics,
)

__all__ = [
    "BoundedExecutor",
    "ExecutorStats",
    "METRICS_JOBS",
    "MetricsJobRunner",
    "compute_customer_ltv",
    "compute_product_performance",
    "compute_profit_metrics",
]
