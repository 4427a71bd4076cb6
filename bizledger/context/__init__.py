"""AI business-context package."""

from bizledger.context.builder import BusinessContextBuilder

__all__ = ["BusinessContextBuilder"]
