"""
HTTP middleware: request ids, access logging and problem+json error handlers.
"""

from .errors import PROBLEM_CT, install_error_handlers
from .logging import AccessLogMiddleware, install_access_log_middleware
from .request_id import RequestIdMiddleware

__all__ = [
    "PROBLEM_CT",
    "install_error_handlers",
    "AccessLogMiddleware",
    "install_access_log_middleware",
    "RequestIdMiddleware",
]
