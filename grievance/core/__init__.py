"""
Core Module
============

Shared core abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from grievance.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    IllegalTransitionException,
    NotReopenableException,
    ReopenWindowExpiredException,
    RepositoryException,
    VersionConflictException,
    ResourceNotFoundException,
    LookupDegradedException,
    ConfigurationException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "IllegalTransitionException",
    "NotReopenableException",
    "ReopenWindowExpiredException",
    "RepositoryException",
    "VersionConflictException",
    "ResourceNotFoundException",
    "LookupDegradedException",
    "ConfigurationException",
]
