"""Local execution records for remote workflow runs.

This package holds:
- the record model and its pure transition rules
- a persisted store with compare-and-update writes
- the service that reconciles records with the remote API
- a polling coordinator that drives reconciliation in the background
"""

__all__: list[str] = []
