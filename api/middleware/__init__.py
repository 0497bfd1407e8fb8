"""
Middleware for the Carrera Cars lead bot API.
"""

from .metrics import MetricsMiddleware, metrics_endpoint

__all__ = ["MetricsMiddleware", "metrics_endpoint"]
