"""
Canonical Model Module.

Vendor-neutral test runs, test cases, steps and the typed session state that carries
tracker correlation ids between synchronization stages.
"""

from xraysync.model.canonical import (
    CanonicalTestCase,
    CanonicalTestRun,
    CanonicalTestStep,
    ContextValidationError,
    SessionState,
    StepException,
    StepState,
)

__all__ = [
    "CanonicalTestCase",
    "CanonicalTestRun",
    "CanonicalTestStep",
    "ContextValidationError",
    "SessionState",
    "StepException",
    "StepState",
]
