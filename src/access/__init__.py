"""
Access Control Module
=====================

Bounded Context for role-based authorization.

Responsibilities:
- Hold the fixed role -> resource -> actions permission matrix
- Answer pure "may this role do X on Y" lookups
- Apply ticket ownership/assignment rules per role

Nothing in this module touches storage or writes audit entries;
call sites audit denials themselves.
"""

__version__ = "1.0.0"
