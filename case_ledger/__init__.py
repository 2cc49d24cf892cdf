"""Case Ledger: case-management backend for a law firm."""

__version__ = "1.0.0"
