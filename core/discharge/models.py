"""
Read-only view of a discharge case as consumed by the follow-up core
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import uuid

# Sources whose clinical content arrives as appointment notes from the
# practice-management integration instead of SOAP notes or transcripts
EXTERNAL_SOURCES = ("idexx_neo", "idexx_extension")

SOAP_SECTIONS = ("subjective", "objective", "assessment", "plan")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class SoapNote:
    subjective: Optional[str] = None
    objective: Optional[str] = None
    assessment: Optional[str] = None
    plan: Optional[str] = None
    client_instructions: Optional[str] = None

    def sections(self) -> Dict[str, str]:
        """Non-empty SOAP sections by name"""
        return {name: _text(getattr(self, name)) for name in SOAP_SECTIONS if _text(getattr(self, name))}

    def has_content(self) -> bool:
        return bool(self.sections())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SoapNote":
        return cls(
            subjective=data.get("subjective"),
            objective=data.get("objective"),
            assessment=data.get("assessment"),
            plan=data.get("plan"),
            client_instructions=data.get("client_instructions") or data.get("clientInstructions"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subjective": self.subjective,
            "objective": self.objective,
            "assessment": self.assessment,
            "plan": self.plan,
            "client_instructions": self.client_instructions,
        }


@dataclass
class DischargeCase:
    """
    A completed appointment that may need a follow-up.

    Assembled by the surrounding platform; this core only reads it.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: str = "manual"
    case_type: Optional[str] = None
    patient_name: Optional[str] = None
    external_notes: Optional[str] = None
    soap_notes: List[SoapNote] = field(default_factory=list)
    discharge_summaries: List[str] = field(default_factory=list)
    transcriptions: List[str] = field(default_factory=list)
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_external_source(self) -> bool:
        return (self.source or "").lower() in EXTERNAL_SOURCES

    @property
    def entities_case_type(self) -> Optional[str]:
        entities = self.metadata.get("entities") or {}
        return entities.get("caseType") or entities.get("case_type")

    def has_external_notes(self) -> bool:
        return bool(_text(self.external_notes))

    def has_clinical_notes(self) -> bool:
        """Any SOAP section, discharge summary or transcript with content"""
        return (
            any(note.has_content() for note in self.soap_notes)
            or any(_text(summary) for summary in self.discharge_summaries)
            or any(_text(transcript) for transcript in self.transcriptions)
        )

    def clinical_text(self) -> str:
        """All clinical content as one labelled block, for prompts"""
        parts = []
        if _text(self.external_notes):
            parts.append(f"APPOINTMENT NOTES:\n{_text(self.external_notes)}")
        for note in self.soap_notes:
            for name, text in note.sections().items():
                parts.append(f"{name.upper()}:\n{text}")
            if _text(note.client_instructions):
                parts.append(f"CLIENT INSTRUCTIONS:\n{_text(note.client_instructions)}")
        for summary in self.discharge_summaries:
            if _text(summary):
                parts.append(f"DISCHARGE SUMMARY:\n{_text(summary)}")
        for transcript in self.transcriptions:
            if _text(transcript):
                parts.append(f"TRANSCRIPT:\n{_text(transcript)}")
        return "\n\n".join(parts)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DischargeCase":
        metadata = data.get("metadata") or {}
        external_notes = data.get("external_notes")
        if external_notes is None:
            external_notes = (metadata.get("idexx") or {}).get("notes")

        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            source=data.get("source") or "manual",
            case_type=data.get("case_type"),
            patient_name=data.get("patient_name"),
            external_notes=external_notes,
            soap_notes=[note if isinstance(note, SoapNote) else SoapNote.from_dict(note)
                        for note in data.get("soap_notes") or []],
            discharge_summaries=list(data.get("discharge_summaries") or []),
            transcriptions=list(data.get("transcriptions") or []),
            owner_phone=data.get("owner_phone"),
            owner_email=data.get("owner_email"),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "case_type": self.case_type,
            "patient_name": self.patient_name,
            "external_notes": self.external_notes,
            "soap_notes": [note.to_dict() for note in self.soap_notes],
            "discharge_summaries": list(self.discharge_summaries),
            "transcriptions": list(self.transcriptions),
            "owner_phone": self.owner_phone,
            "owner_email": self.owner_email,
            "metadata": self.metadata,
        }
