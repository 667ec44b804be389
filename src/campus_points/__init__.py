"""Campus points ledger, check-in gate and redemption engine."""

__version__ = "0.1.0"
