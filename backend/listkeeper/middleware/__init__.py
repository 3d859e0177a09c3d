"""Middleware package."""

from listkeeper.middleware.logging import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
