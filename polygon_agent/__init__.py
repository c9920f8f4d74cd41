"""Polygon agent: custodial wallet sessions and Polymarket trade orchestration."""

__version__ = "0.1.0"
