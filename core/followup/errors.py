"""
Errors raised by generation, dispatch, retry and lifecycle code
"""
from typing import Optional


class TransientExternalError(Exception):
    """An external call failed in a way that may succeed later"""


class RetriesExhaustedError(TransientExternalError):
    """Every retry attempt failed; ``last_error`` is the final cause"""

    def __init__(self, message: str, last_error: Optional[BaseException] = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class GenerationAPIError(Exception):
    """The generation service returned an error response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationParseError(Exception):
    """The generation service answered, but not with the expected JSON"""


class DispatchError(Exception):
    """The dispatch client could not schedule or cancel an action"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTransitionError(Exception):
    """A lifecycle transition that the state machine does not allow"""

    def __init__(self, action_id: str, current: str, requested: str):
        super().__init__(f"Action {action_id}: cannot go from {current} to {requested}")
        self.action_id = action_id
        self.current = current
        self.requested = requested
