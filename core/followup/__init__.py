"""
Followup package for the follow-up core

Contains the fallible outbound steps and the orchestration around them:
- retry: RetryExecutor with bounded exponential backoff
- generation: discharge summary generation via OpenAI
- dispatch: dispatch clients (rq-backed and mock)
- orchestrator: DischargeFollowupOrchestrator
"""

from .errors import (
    TransientExternalError,
    RetriesExhaustedError,
    GenerationAPIError,
    GenerationParseError,
    DispatchError,
    InvalidTransitionError,
)

__all__ = [
    'TransientExternalError',
    'RetriesExhaustedError',
    'GenerationAPIError',
    'GenerationParseError',
    'DispatchError',
    'InvalidTransitionError',
]
