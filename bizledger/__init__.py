"""
BizLedger - Source Package

Back-end core of a small-business expense dashboard. Merges expense
records from an external receipt/classification service and a hosted
relational store into one deduplicated, category-normalized view
grouped by calendar day.

DESIGN PRINCIPLES:
1. Partial results beat no results (a failing source contributes nothing)
2. Ambiguous duplicates are surfaced, never silently merged
3. Every user-facing failure is phrased as a next step
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "BizLedger Team"
