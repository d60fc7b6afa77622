"""
Accounts Module
===============

Bounded Context for user accounts and the authentication path.

Responsibilities:
- Track failed logins and lock accounts after too many
- Two-step login when TOTP multi-factor is enrolled
- Two-phase MFA enrollment (generate secret, confirm once)
- Audit every authentication outcome

Session/token issuance belongs to the upstream gateway.
"""

__version__ = "1.0.0"
