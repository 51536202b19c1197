from typing import Any


class SchedulingError(Exception):
    """Base exception for cohort scheduling errors."""


class ConfigurationError(SchedulingError):
    def __init__(self, role: str, message: str):
        super().__init__(f'Person type "{role}": {message}')
        self.role = role


class PersonDataError(SchedulingError):
    """A single person's record could not be turned into scheduler input."""

    def __init__(self, person_name: str, person_id: str, message: str, record: Any):
        super().__init__(f'In processing person "{person_name}" ({person_id}): {message}')
        self.person_name = person_name
        self.person_id = person_id
        self.record = record


class ModelInvariantError(AssertionError):
    """Raised when the solved model breaks an invariant it is built to guarantee."""
