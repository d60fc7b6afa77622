"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from src.core.context import Origin, Principal, SYSTEM_ORIGIN
from src.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConflictException,
    PermissionDeniedException,
    AuthenticationException,
    InvalidCredentialsException,
    AccountLockedException,
    InvalidMFACodeException,
    AppendOnlyViolationException,
    PersistenceException,
    ConfigurationException,
)

__all__ = [
    "Origin",
    "Principal",
    "SYSTEM_ORIGIN",
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConflictException",
    "PermissionDeniedException",
    "AuthenticationException",
    "InvalidCredentialsException",
    "AccountLockedException",
    "InvalidMFACodeException",
    "AppendOnlyViolationException",
    "PersistenceException",
    "ConfigurationException",
]
