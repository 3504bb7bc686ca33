"""Utility modules for the pricing functions."""

from master_pricing.utils.logging_config import configure_logging

__all__ = ["configure_logging"]
