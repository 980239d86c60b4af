"""Utility modules."""

from .audit_logger import AuditLogger
from .logging import setup_logging

__all__ = ["AuditLogger", "setup_logging"]
