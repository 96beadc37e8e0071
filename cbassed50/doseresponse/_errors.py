"""Exception types raised by the dose-response pipeline."""

from __future__ import annotations


class CBASSError(Exception):
    """Base class for all cbassed50 errors."""


class SchemaError(CBASSError, ValueError):
    """Required columns are absent from the dataset."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class InsufficientDataError(CBASSError, ValueError):
    """A fitting cohort has too few distinct stimulus levels or observations."""

    def __init__(self, message: str, group: str | None = None) -> None:
        super().__init__(message)
        self.group = group


class ConvergenceError(CBASSError, RuntimeError):
    """The nonlinear solver did not produce a usable fit."""

    def __init__(self, message: str, group: str | None = None) -> None:
        super().__init__(message)
        self.group = group
