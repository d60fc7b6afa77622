"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (access, accounts, tickets, audit, SLA).

Architecture Pattern: Modular Monolith
- Each module is a bounded context with its own domain/application/
  infrastructure/interfaces layers
- Shared kernel contains only generic infrastructure: logging, request
  middleware and API dependencies

DO NOT add ticket, account or SLA business rules to the shared kernel.
"""

__version__ = "1.0.0"
