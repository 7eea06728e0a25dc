"""omeganode_checkout - checkout core for Solana validator hosting plans."""

__version__ = "0.1.0"
