"""
Discharge summary generation through an LLM

The generation client is a thin adapter over the OpenAI SDK. Summary
generation builds the prompts, calls the client and validates the JSON that
comes back; transient API errors and unparseable output are left to the
RetryExecutor to handle.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import openai

from discharge.models import DischargeCase
from storage.errors import ValidationError
from .errors import GenerationAPIError, GenerationParseError
from .retry import RetryExecutor

logger = logging.getLogger("discharge-generation")

SUMMARY_SYSTEM_PROMPT = """You write short, friendly discharge summaries for pet owners from veterinary clinical notes.

Only use information that is explicitly present in the notes. Never guess diagnoses,
medications or instructions. Leave out anything that is not stated.

Return ONLY valid JSON with this structure:
{
  "patientName": "Pet's name",
  "caseType": "surgery|dental|vaccination|dermatology|wellness|emergency|gastrointestinal|orthopedic|other",
  "appointmentSummary": "2-4 warm sentences describing the visit in general terms",
  "treatmentsToday": ["Procedures, exams or vaccinations done during the visit"],
  "medications": [{"name": "", "dosage": "", "frequency": "", "duration": "", "instructions": ""}],
  "homeCare": {"activity": "", "diet": "", "woundCare": "", "monitoring": []},
  "warningSigns": ["Only signs stated in the notes"],
  "followUp": {"required": false, "date": "", "reason": ""}
}"""

REQUIRED_SUMMARY_FIELDS = ("patientName", "appointmentSummary")

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class GenerationClient(ABC):
    """Abstract interface for text generation"""

    @abstractmethod
    def chat(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's reply. Failures raise GenerationAPIError."""
        pass


class OpenAIGenerationClient(GenerationClient):
    """Generation client backed by the OpenAI chat completions API"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[openai.OpenAI] = None, temperature: float = 0.1, max_tokens: int = 1500):
        from config.settings import OPENAI_API_KEY, OPENAI_MODEL
        self.model = model or OPENAI_MODEL
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or openai.OpenAI(api_key=api_key or OPENAI_API_KEY)

    def chat(self, system_prompt: str, user_prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APIStatusError as e:
            raise GenerationAPIError(f"OpenAI request failed: {e.message}", status_code=e.status_code) from e
        except openai.APIConnectionError as e:
            # No HTTP status; treated like the service being unavailable
            raise GenerationAPIError(f"OpenAI connection failed: {e}", status_code=503) from e

        if response.choices and response.choices[0].message and response.choices[0].message.content:
            return response.choices[0].message.content.strip()

        raise GenerationParseError("OpenAI returned an empty response")


def build_summary_prompt(case: DischargeCase, patient_name: Optional[str] = None) -> str:
    """
    Build the user prompt for a discharge summary

    Raises:
        ValidationError: If the case has no clinical content at all
    """
    clinical_text = case.clinical_text()
    if not clinical_text:
        raise ValidationError(f"Case {case.id} has no clinical content to summarize")

    name = patient_name or case.patient_name or "the patient"
    lines = [f"Patient name: {name}"]
    if case.case_type:
        lines.append(f"Recorded case type: {case.case_type}")
    lines.append("")
    lines.append("Clinical notes:")
    lines.append(clinical_text)
    return "\n".join(lines)


def parse_summary(raw: str) -> Dict[str, Any]:
    """
    Parse and validate the model's JSON reply

    Raises:
        GenerationParseError: On invalid JSON or missing required fields
    """
    text = _CODE_FENCE.sub("", (raw or "").strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationParseError(f"Generated summary is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationParseError("Generated summary is not a JSON object")

    missing: List[str] = [name for name in REQUIRED_SUMMARY_FIELDS if not data.get(name)]
    if missing:
        raise GenerationParseError(f"Generated summary is missing fields: {missing}")
    return data


class DischargeSummaryGenerator:
    """Generates structured discharge summaries with retries"""

    def __init__(self, client: GenerationClient, retry_executor: Optional[RetryExecutor] = None):
        self.client = client
        self.retry_executor = retry_executor or RetryExecutor()

    def generate(self, case: DischargeCase, patient_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Generate a summary for a case

        Args:
            case: Discharge case with clinical content
            patient_name: Overrides the name on the case

        Returns:
            Parsed summary dictionary
        """
        user_prompt = build_summary_prompt(case, patient_name)

        def attempt():
            return parse_summary(self.client.chat(SUMMARY_SYSTEM_PROMPT, user_prompt))

        summary = self.retry_executor.run(attempt, description=f"summary generation for case {case.id}")
        logger.info(f"Generated discharge summary for case {case.id}")
        return summary
