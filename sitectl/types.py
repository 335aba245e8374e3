"""
Type definitions for sitectl.

Contains common type definitions used across the application.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class BackendMode(str, Enum):
    """How a collaborator (web server or ACME client) is reachable."""

    CONTAINERIZED = "containerized"
    NATIVE = "native"


class SiteState(str, Enum):
    """Lifecycle state of a site, derived from the filesystem."""

    ABSENT = "absent"
    CREATED = "created"
    SECURED = "secured"
    DISABLED = "disabled"


class IssuanceStage(str, Enum):
    """Steps of certificate issuance, in the order they are reached."""

    VALIDATED = "validated"
    CHALLENGED = "challenged"
    ISSUED = "issued"
    INSTALLED = "installed"
    ACTIVATED = "activated"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Failure taxonomy used to pick exit codes and messages."""

    USAGE = "usage"
    PRECONDITION = "precondition"
    EXTERNAL = "external"
    CANCELLED = "cancelled"


# Structured result types for operations
@dataclass
class Success:
    message: str = ""
    data: Any | None = None


@dataclass
class Error:
    error: str
    exception: Exception | None = None
    recovery_suggestions: str | None = None
    kind: ErrorKind = ErrorKind.EXTERNAL
    exit_code: int = 1


# Union type for command results
Result = Success | Error


class SitectlError(Exception):
    """Base exception for sitectl errors."""


class ConfigRenderError(SitectlError):
    """Raised when a site configuration cannot be rendered."""
