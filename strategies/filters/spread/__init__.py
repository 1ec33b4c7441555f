"""Spread-based filters."""

from .max_spread_filter import MaxSpreadFilter

__all__ = ['MaxSpreadFilter']
