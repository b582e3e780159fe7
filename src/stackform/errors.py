# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/stackform/errors.py


class StackformError(RuntimeError):
    """Base class for stackform failures."""


class ProbeError(StackformError):
    """Raised when the current state of a resource cannot be read."""


class ValidationError(StackformError):
    """Raised when the desired state is malformed."""


class UnknownDependencyError(ValidationError):
    pass


class CyclicDependencyError(ValidationError):
    pass


class ExecutionError(StackformError):
    """Base class for failures while applying a single operation."""


class TransientExecutionError(ExecutionError):
    """A failure that may succeed on a later attempt (pulls, installs)."""


class DeterministicExecutionError(ExecutionError):
    """A failure that would repeat identically if retried."""


class RetryError(ExecutionError):
    """Raised once a retried call has used all of its attempts."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
