"""
Core modules for health credits.

This package contains the credit ledger, the recharge policy, the
consumption gate and the top-up applier.
"""
