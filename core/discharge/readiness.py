"""
DischargeReadinessEvaluator - decides whether a case may get a follow-up

Order of checks:
1. sensitive cases (euthanasia, DOA, deceased) are blocked outright
2. content gate: the case has clinical content for its source
3. contact gate: the owner (or the test contact) can be reached
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .contact import has_valid_contact
from .models import DischargeCase

logger = logging.getLogger("discharge-readiness")

BLOCKED_KEYWORDS = (
    "euthanasia",
    "euthanize",
    "euthanized",
    "doa",
    "dead on arrival",
    "deceased",
    "passed away",
    "death during",
    "humane ending",
    "compassionate euthanasia",
    "put to sleep",
    "pts",
    "humanely euthanized",
)

BLOCKED_CASE_TYPES = ("euthanasia", "doa", "deceased")

MISSING_EXTERNAL_NOTES = "External appointment notes"
MISSING_CLINICAL_NOTES = "Clinical notes (SOAP, discharge summary, or transcription)"
MISSING_CONTACT = "Contact info (phone or email)"
MISSING_TEST_CONTACT = "Test contact info (configure in settings)"

_KEYWORD_PATTERNS = [(keyword, re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE))
                     for keyword in BLOCKED_KEYWORDS]


@dataclass
class TestModeConfig:
    """When enabled, follow-ups go to the configured test contact instead of the owner"""
    __test__ = False

    enabled: bool = False
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None

    @classmethod
    def from_env(cls) -> "TestModeConfig":
        from config.settings import TEST_MODE_ENABLED, TEST_CONTACT_PHONE, TEST_CONTACT_EMAIL
        return cls(enabled=TEST_MODE_ENABLED, contact_phone=TEST_CONTACT_PHONE, contact_email=TEST_CONTACT_EMAIL)

    def has_valid_contact(self) -> bool:
        return has_valid_contact(self.contact_phone) or has_valid_contact(self.contact_email)


@dataclass
class ReadinessResult:
    ready: bool
    missing: List[str] = field(default_factory=list)
    blocked_reason: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.blocked_reason is not None


def _iter_text(value: Any) -> Iterable[str]:
    """Yield every string nested in a metadata structure"""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_text(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_text(item)


def _searchable_text(case: DischargeCase) -> List[str]:
    texts = [case.external_notes or ""]
    for note in case.soap_notes:
        texts.extend(note.sections().values())
        texts.append(note.client_instructions or "")
    texts.extend(case.discharge_summaries)
    texts.extend(_iter_text(case.metadata))
    return [text for text in texts if text]


def find_blocked_keyword(texts: Iterable[str]) -> Optional[str]:
    for text in texts:
        for keyword, pattern in _KEYWORD_PATTERNS:
            if pattern.search(text):
                return keyword
    return None


def is_blocked_case(case: DischargeCase) -> Optional[str]:
    """
    Check a case for euthanasia / DOA / deceased signals

    Returns:
        The block reason, or None if the case may be contacted
    """
    case_type = (case.case_type or "").strip().lower()
    if case_type in BLOCKED_CASE_TYPES:
        return f"Case type: {case_type}"

    entities_case_type = (case.entities_case_type or "").strip().lower()
    if entities_case_type in BLOCKED_CASE_TYPES:
        return f"Entities case type: {entities_case_type}"

    keyword = find_blocked_keyword(_searchable_text(case))
    if keyword:
        return f'Content contains: "{keyword}"'
    return None


class DischargeReadinessEvaluator:
    def evaluate(self, case: DischargeCase, test_mode: Optional[TestModeConfig] = None) -> ReadinessResult:
        """
        Evaluate whether a case is ready for a follow-up

        Args:
            case: The discharge case
            test_mode: Test-mode settings (disabled when None)

        Returns:
            ReadinessResult; ``missing`` lists content items before contact items
        """
        test_mode = test_mode or TestModeConfig()

        blocked_reason = is_blocked_case(case)
        if blocked_reason:
            logger.info(f"Case {case.id} blocked from follow-up: {blocked_reason}")
            return ReadinessResult(ready=False, missing=[blocked_reason], blocked_reason=blocked_reason)

        missing = []

        if case.is_external_source:
            if not case.has_external_notes():
                missing.append(MISSING_EXTERNAL_NOTES)
        elif not case.has_clinical_notes():
            missing.append(MISSING_CLINICAL_NOTES)

        has_owner_contact = has_valid_contact(case.owner_phone) or has_valid_contact(case.owner_email)
        has_test_contact = test_mode.enabled and test_mode.has_valid_contact()
        if not (has_owner_contact or has_test_contact):
            missing.append(MISSING_TEST_CONTACT if test_mode.enabled else MISSING_CONTACT)

        if missing:
            logger.debug(f"Case {case.id} not ready: {missing}")
        return ReadinessResult(ready=not missing, missing=missing)
