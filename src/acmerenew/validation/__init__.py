"""Pluggable challenge validation.

Exports the validator base class and the scheduler that drives
validators through prepare, commit, answer and cleanup.
"""

from acmerenew.validation.base import ValidationContext, Validator
from acmerenew.validation.scheduler import ValidationItem, ValidationOutcome, ValidationScheduler

__all__ = [
    "ValidationContext",
    "ValidationItem",
    "ValidationOutcome",
    "ValidationScheduler",
    "Validator",
]
