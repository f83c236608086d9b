"""
Middleware components for ProofPanel
"""

from .security import SecurityHeadersMiddleware, RequestTracingMiddleware

__all__ = ["SecurityHeadersMiddleware", "RequestTracingMiddleware"]
