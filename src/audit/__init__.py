"""
Audit Module
============

Bounded Context for the append-only security audit ledger.

Responsibilities:
- Record every security-relevant event (logins, ticket changes, denials)
- Refuse mutation or deletion of recorded entries at the storage layer
- Serve filtered, paginated queries and summary statistics

Audit writes are best-effort: a failure is logged and never breaks
the business operation that triggered it.
"""

__version__ = "1.0.0"
