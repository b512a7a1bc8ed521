"""Shared helpers for loadtest-orchestrator."""

from lt_common.api import LTError, configure_logging

__all__ = ["configure_logging", "LTError"]
