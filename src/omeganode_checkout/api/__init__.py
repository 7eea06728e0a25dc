"""HTTP API for the checkout service."""

from omeganode_checkout.api.http import create_app, run_server

__all__ = ["create_app", "run_server"]
