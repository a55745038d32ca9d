"""Loyalty maintenance jobs."""

from .expiration import expire_loyalty_points
from .reconciliation import reconcile_loyalty_balances

__all__ = ["expire_loyalty_points", "reconcile_loyalty_balances"]
