"""
Error Handling - Centralized error policies and custom exceptions.

Failures are always scoped to the smallest unit affected: a file is skipped,
a domain indexes as empty, a persisted unit loads as a cache miss. Only a
missing workspace aborts a whole operation.
"""

import json
import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this file, continue the domain
    EMPTY_DOMAIN = auto()   # Index the affected domain as empty
    CACHE_MISS = auto()     # Treat persisted data as absent, rebuild
    ABORT = auto()          # Stop the entire operation


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


class IndexingError(Exception):
    """Base exception for indexing errors."""
    pass


class NoWorkspaceError(IndexingError):
    """No workspace roots are configured, so there is nothing to index."""
    pass


class ToolchainError(IndexingError):
    """The Go toolchain could not be queried."""
    pass


class StorageError(IndexingError):
    """Error while reading or writing the persisted index."""
    pass


class CorruptUnitError(StorageError):
    """A persisted unit is unparsable, oversized or structurally invalid."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt index unit {path.name}: {reason}")


# Error type to policy mapping. Order matters: subclasses before bases.
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    NoWorkspaceError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="No workspace roots: {error}"
    ),
    CorruptUnitError: ErrorPolicy(
        action=ErrorAction.CACHE_MISS,
        log_level=logging.WARNING,
        message_template="Discarding persisted unit {file}: {error}"
    ),
    json.JSONDecodeError: ErrorPolicy(
        action=ErrorAction.CACHE_MISS,
        log_level=logging.WARNING,
        message_template="Unparsable persisted unit {file}: {error}"
    ),
    ToolchainError: ErrorPolicy(
        action=ErrorAction.EMPTY_DOMAIN,
        log_level=logging.WARNING,
        message_template="Go toolchain unavailable: {error}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP, CACHE_MISS, etc.)
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Unknown errors never escalate past the file being processed
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action
