"""
Discharge package for the follow-up core

Contains the case view and readiness gating:
- models: DischargeCase, SoapNote
- contact: contact validation and E.164 normalization
- readiness: DischargeReadinessEvaluator, TestModeConfig
"""

from .models import DischargeCase, SoapNote
from .readiness import DischargeReadinessEvaluator, ReadinessResult, TestModeConfig, is_blocked_case

__all__ = [
    'DischargeCase',
    'SoapNote',
    'DischargeReadinessEvaluator',
    'ReadinessResult',
    'TestModeConfig',
    'is_blocked_case',
]
