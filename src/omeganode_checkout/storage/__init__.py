"""Persistence layer."""

from omeganode_checkout.storage.sqlite import SQLiteCheckoutStore

__all__ = ["SQLiteCheckoutStore"]
