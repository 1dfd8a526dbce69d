"""
FloorOps

Order assignment and audit engine for restaurant floor staff: waiters
compete for pending orders, claim or reject them, get auto-rejected on
timeout, and every change lands in an append-only modification ledger.

Version: 1.0.0
"""

__version__ = "1.0.0"
