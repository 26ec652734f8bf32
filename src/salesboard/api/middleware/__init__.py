"""API middleware package."""

from src.salesboard.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
