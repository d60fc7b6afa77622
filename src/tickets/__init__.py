"""
Tickets Module
==============

Ticket lifecycle: creation with gap-free numbering, field updates,
escalation, reassignment, comments, attachment metadata and the
append-only change history.
"""
