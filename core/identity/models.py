"""
Tenant entity models: clinics, providers, clients and canonical patients
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
import uuid

from utils.time_utils import now_utc, to_iso, from_iso

# Demographic fields of a canonical patient; each is written once and then kept
DEMOGRAPHIC_FIELDS = ("species", "breed", "sex", "date_of_birth", "color", "microchip_id")

# Values that count as "not known yet" for demographic merging
EMPTY_DEMOGRAPHIC_VALUES = ("", "unknown")


class ProviderRole(Enum):
    """Role of a provider inside a clinic"""
    VETERINARIAN = "veterinarian"
    VET_TECH = "vet_tech"
    RECEPTIONIST = "receptionist"
    OTHER = "other"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "ProviderRole":
        """Convert string to ProviderRole, coercing unknown roles to OTHER"""
        if not value:
            return cls.OTHER

        try:
            return cls(value)
        except ValueError:
            pass

        value_lower = value.strip().lower().replace(' ', '_').replace('-', '_')
        mapping = {
            'vet': cls.VETERINARIAN,
            'dvm': cls.VETERINARIAN,
            'doctor': cls.VETERINARIAN,
            'technician': cls.VET_TECH,
            'vet_technician': cls.VET_TECH,
            'tech': cls.VET_TECH,
            'front_desk': cls.RECEPTIONIST,
        }
        if value_lower in mapping:
            return mapping[value_lower]
        try:
            return cls(value_lower)
        except ValueError:
            return cls.OTHER


def is_empty_demographic(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in EMPTY_DEMOGRAPHIC_VALUES


@dataclass
class Clinic:
    """A tenant. Never hard-deleted."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    slug: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    timezone: Optional[str] = None
    pims_type: str = "none"
    business_hours: Optional[Dict[str, Any]] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "timezone": self.timezone,
            "pims_type": self.pims_type,
            "business_hours": self.business_hours,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Clinic":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            slug=data.get("slug", ""),
            email=data.get("email"),
            phone=data.get("phone"),
            address=data.get("address"),
            timezone=data.get("timezone"),
            pims_type=data.get("pims_type") or "none",
            business_hours=data.get("business_hours"),
            is_active=data.get("is_active", True),
            created_at=from_iso(data.get("created_at")) or now_utc(),
            updated_at=from_iso(data.get("updated_at")) or now_utc(),
        )


@dataclass
class Provider:
    """A veterinarian or staff member, keyed by its external-system id"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    clinic_id: str = ""
    external_id: str = ""
    name: str = ""
    role: ProviderRole = ProviderRole.OTHER
    is_active: bool = True
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "external_id": self.external_id,
            "name": self.name,
            "role": self.role.value,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Provider":
        return cls(
            id=data["id"],
            clinic_id=data.get("clinic_id", ""),
            external_id=data.get("external_id", ""),
            name=data.get("name", ""),
            role=ProviderRole.from_string(data.get("role")),
            is_active=data.get("is_active", True),
            created_at=from_iso(data.get("created_at")) or now_utc(),
            updated_at=from_iso(data.get("updated_at")) or now_utc(),
        )


@dataclass
class Client:
    """The pet owner, keyed by clinic and phone (email when no phone is known)"""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    clinic_id: str = ""
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Client":
        return cls(
            id=data["id"],
            clinic_id=data.get("clinic_id", ""),
            name=data.get("name", ""),
            phone=data.get("phone"),
            email=data.get("email"),
            created_at=from_iso(data.get("created_at")) or now_utc(),
            updated_at=from_iso(data.get("updated_at")) or now_utc(),
        )


@dataclass
class CanonicalPatient:
    """
    The de-duplicated identity of an animal across visits.

    Demographic fields are filled in the first time a visit supplies them and
    are never overwritten afterwards.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_id: str = ""
    name: str = ""
    species: Optional[str] = None
    breed: Optional[str] = None
    sex: Optional[str] = None
    date_of_birth: Optional[str] = None
    color: Optional[str] = None
    microchip_id: Optional[str] = None
    visit_count: int = 0
    first_visit_at: Optional[datetime] = None
    last_visit_at: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def demographics(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in DEMOGRAPHIC_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "name": self.name,
            "visit_count": self.visit_count,
            "first_visit_at": to_iso(self.first_visit_at),
            "last_visit_at": to_iso(self.last_visit_at),
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }
        data.update(self.demographics())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalPatient":
        return cls(
            id=data["id"],
            client_id=data.get("client_id", ""),
            name=data.get("name", ""),
            visit_count=int(data.get("visit_count") or 0),
            first_visit_at=from_iso(data.get("first_visit_at")),
            last_visit_at=from_iso(data.get("last_visit_at")),
            is_active=data.get("is_active", True),
            created_at=from_iso(data.get("created_at")) or now_utc(),
            updated_at=from_iso(data.get("updated_at")) or now_utc(),
            **{name: data.get(name) for name in DEMOGRAPHIC_FIELDS},
        )


@dataclass
class OwnerInfo:
    """Owner contact details as they arrive with a case"""
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class PatientInfo:
    """Patient details as they arrive with a case"""
    name: str
    demographics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ClientIdentity:
    """Result of resolving a clinic, client and canonical patient together"""
    clinic: Clinic
    client: Client
    patient: CanonicalPatient
    is_new_client: bool = False
    is_new_patient: bool = False
