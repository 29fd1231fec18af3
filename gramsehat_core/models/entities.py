# =============================================================================
# gramsehat_core/models/entities.py
# Domain Entities for the Local-First Store
# =============================================================================
"""
Domain entities persisted by the local store.

Reference entities (HealthcareCenter, EmergencyContact, HealthScheme) are
owned by the remote authority and only written by the download path.
User entities (UserProfile, PregnancyCase, ChildRecord, Reminder,
VaccinationRecord) originate on the device and are uploaded through the
outbox.

Every entity serializes to a JSON-safe record with ``to_record()`` and is
rebuilt with ``from_record()``; the conversion is driven by the dataclass
type hints so new optional fields need no codec changes.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import (
    Any, ClassVar, Dict, List, Optional, Type, Union,
    get_args, get_origin, get_type_hints,
)

from gramsehat_core.errors import ValidationFailure


SUPPORTED_LANGUAGES = ("en", "hi", "bn", "te", "mr", "ta", "gu", "kn", "ml", "or", "pa", "as")


def new_id() -> str:
    """Generate an opaque entity key."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Current device time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# =============================================================================
# ENUMERATIONS
# =============================================================================

class FacilityType(Enum):
    SUB_CENTER = "sub_center"
    PRIMARY_HEALTH_CENTER = "primary_health_center"
    COMMUNITY_HEALTH_CENTER = "community_health_center"
    DISTRICT_HOSPITAL = "district_hospital"
    PRIVATE_HOSPITAL = "private_hospital"


class EmergencyServiceType(Enum):
    AMBULANCE = "ambulance"
    POLICE = "police"
    FIRE = "fire"
    HEALTH_HELPLINE = "health_helpline"
    WOMEN_HELPLINE = "women_helpline"
    CHILD_HELPLINE = "child_helpline"


class IncomeCategory(Enum):
    BPL = "bpl"
    LOW = "low"
    MIDDLE = "middle"
    HIGH = "high"


class RationCardType(Enum):
    APL = "apl"
    BPL = "bpl"
    ANTYODAYA = "antyodaya"
    PRIORITY_HOUSEHOLD = "priority_household"


class ReminderType(Enum):
    MATERNAL_CHECKUP = "maternal_checkup"
    MATERNAL_VACCINATION = "maternal_vaccination"
    MATERNAL_NUTRITION = "maternal_nutrition"
    CHILD_VACCINATION = "child_vaccination"
    CHILD_CHECKUP = "child_checkup"


# =============================================================================
# RECORD CODEC
# =============================================================================

def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _encode(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _encode(v) for k, v in value.items()}
    return value


def _decode(tp: Any, value: Any) -> Any:
    if value is None or tp is Any:
        return value

    origin = get_origin(tp)
    if origin is Union:
        args = [a for a in get_args(tp) if a is not type(None)]
        return _decode(args[0], value) if len(args) == 1 else value
    if origin is list:
        args = get_args(tp)
        item_type = args[0] if args else Any
        return [_decode(item_type, v) for v in value]
    if origin is dict:
        return dict(value)

    if tp is datetime:
        return parse_timestamp(value)
    if tp is date:
        return parse_date(value)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return value if isinstance(value, tp) else tp(value)
    if isinstance(tp, type) and is_dataclass(tp):
        return value if isinstance(value, tp) else _from_mapping(tp, value)
    if tp is bool:
        return bool(value)
    if tp is int:
        return int(value)
    if tp is float:
        return float(value)
    if tp is str:
        # numbers such as a bare 108 helpline arrive unquoted from some feeds
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if not isinstance(value, str):
            raise TypeError(f"expected text, got {type(value).__name__}")
    return value


def _is_optional(tp: Any) -> bool:
    return tp is Any or (get_origin(tp) is Union and type(None) in get_args(tp))


def _from_mapping(cls: Type, data: Dict[str, Any]) -> Any:
    if not isinstance(data, dict):
        raise TypeError(f"expected a mapping for {cls.__name__}, got {type(data).__name__}")

    hints = get_type_hints(cls)
    kwargs = {}
    for f in fields(cls):
        if not f.init or f.name not in data:
            continue
        value = data[f.name]
        if value is None and not _is_optional(hints[f.name]):
            raise TypeError(f"field '{f.name}' must not be null")
        kwargs[f.name] = _decode(hints[f.name], value)
    return cls(**kwargs)


# =============================================================================
# BASE ENTITY
# =============================================================================

class Entity:
    """Behaviour shared by every stored entity."""

    ENTITY_TYPE: ClassVar[str] = ""
    IS_REFERENCE: ClassVar[bool] = False

    id: str
    last_updated: datetime

    def validate(self) -> None:
        if not self.id:
            self._fail("Entity id must not be empty", "id")

    def to_record(self) -> Dict[str, Any]:
        """JSON-safe dictionary of every field."""
        return _encode(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]):
        """
        Rebuild an entity; unknown keys are ignored for forward compatibility.

        Nulls in required fields and values of the wrong shape raise
        ValidationFailure rather than surfacing later from ``validate()``.
        """
        try:
            return _from_mapping(cls, record)
        except (TypeError, ValueError, AttributeError) as e:
            raise ValidationFailure(
                f"Malformed {cls.ENTITY_TYPE} record: {e}",
                entity_type=cls.ENTITY_TYPE,
            ) from e

    def touch(self, when: Optional[datetime] = None) -> None:
        self.last_updated = when or utcnow()

    @property
    def key(self) -> tuple:
        return (self.ENTITY_TYPE, self.id)

    def _fail(self, message: str, field_name: str, value: Any = None) -> None:
        raise ValidationFailure(
            message,
            entity_type=self.ENTITY_TYPE,
            field=field_name,
            value=value,
            details={"entity_id": self.id},
        )


# =============================================================================
# REFERENCE ENTITIES
# =============================================================================

@dataclass
class HealthcareCenter(Entity):
    """A health facility with its location and offered services."""

    ENTITY_TYPE: ClassVar[str] = "healthcare_center"
    IS_REFERENCE: ClassVar[bool] = True

    name: str
    facility_type: FacilityType
    latitude: float
    longitude: float
    district: str
    address: str = ""
    phone: str = ""
    services: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        super().validate()
        for name in ("latitude", "longitude"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                self._fail(f"{name.capitalize()} must be a number", name, value)
        if not -90.0 <= self.latitude <= 90.0:
            self._fail("Latitude must be within [-90, 90]", "latitude", self.latitude)
        if not -180.0 <= self.longitude <= 180.0:
            self._fail("Longitude must be within [-180, 180]", "longitude", self.longitude)
        if not isinstance(self.district, str) or not self.district.strip():
            self._fail("District must not be empty", "district")


@dataclass
class EmergencyContact(Entity):
    ENTITY_TYPE: ClassVar[str] = "emergency_contact"
    IS_REFERENCE: ClassVar[bool] = True

    service_name: str
    phone_number: str
    service_type: EmergencyServiceType
    district: str = ""
    service_area: str = ""
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        super().validate()
        if not isinstance(self.phone_number, str) or not self.phone_number.strip():
            self._fail("Phone number must not be empty", "phone_number")


@dataclass
class EligibilityCriteria:
    """
    Declarative predicate set attached to a scheme.

    Unset fields impose no restriction. ``max_income`` is an annual ceiling in
    rupees compared against the static ceiling of the profile's income category.
    """

    min_age: Optional[int] = None
    max_age: Optional[int] = None
    gender: Optional[str] = None
    max_income: Optional[float] = None
    requires_ration_card: bool = False
    allowed_card_types: List[RationCardType] = field(default_factory=list)
    is_for_pregnant_women: bool = False
    is_for_children: bool = False
    additional_conditions: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthScheme(Entity):
    ENTITY_TYPE: ClassVar[str] = "health_scheme"
    IS_REFERENCE: ClassVar[bool] = True

    name: str
    criteria: EligibilityCriteria = field(default_factory=EligibilityCriteria)
    localized_names: Dict[str, str] = field(default_factory=dict)
    description: str = ""
    benefits: List[str] = field(default_factory=list)
    documents: List[str] = field(default_factory=list)
    application_process: str = ""
    contact_info: str = ""
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        super().validate()
        criteria = self.criteria
        if not isinstance(criteria, EligibilityCriteria):
            self._fail("Eligibility criteria are required", "criteria", criteria)
        if criteria.min_age is not None and criteria.min_age < 0:
            self._fail("Minimum age must not be negative", "criteria.min_age", criteria.min_age)
        if (
            criteria.min_age is not None
            and criteria.max_age is not None
            and criteria.min_age > criteria.max_age
        ):
            self._fail(
                "Minimum age exceeds maximum age",
                "criteria.min_age",
                f"{criteria.min_age} > {criteria.max_age}",
            )
        if criteria.max_income is not None and criteria.max_income < 0:
            self._fail("Income ceiling must not be negative", "criteria.max_income", criteria.max_income)

    def display_name(self, language: str = "en") -> str:
        return self.localized_names.get(language, self.name)


# =============================================================================
# USER ENTITIES
# =============================================================================

@dataclass
class UserProfile(Entity):
    ENTITY_TYPE: ClassVar[str] = "user_profile"

    age: int
    gender: Optional[str] = None
    income_category: Optional[IncomeCategory] = None
    has_ration_card: bool = False
    ration_card_type: Optional[RationCardType] = None
    is_pregnant: bool = False
    has_children: bool = False
    district: str = ""
    village: str = ""
    preferred_language: str = "en"
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)
    synced_at: Optional[datetime] = None

    def validate(self) -> None:
        super().validate()
        if self.age is None or self.age < 0:
            self._fail("Age must be zero or greater", "age", self.age)
        if self.preferred_language not in SUPPORTED_LANGUAGES:
            self._fail(
                f"Unsupported language; expected one of {', '.join(SUPPORTED_LANGUAGES)}",
                "preferred_language",
                self.preferred_language,
            )


@dataclass
class PregnancyCase(Entity):
    """A pregnancy, possibly registered by a health worker for another household."""

    ENTITY_TYPE: ClassVar[str] = "pregnancy_case"

    subject_name: str
    expected_delivery_date: date
    user_id: Optional[str] = None
    registered_by: Optional[str] = None
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)
    synced_at: Optional[datetime] = None

    def validate(self) -> None:
        super().validate()
        if self.expected_delivery_date is None:
            self._fail("Expected delivery date is required", "expected_delivery_date")


@dataclass
class ChildRecord(Entity):
    ENTITY_TYPE: ClassVar[str] = "child_record"

    child_name: str
    birth_date: date
    user_id: Optional[str] = None
    registered_by: Optional[str] = None
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)
    synced_at: Optional[datetime] = None

    def validate(self, today: Optional[date] = None) -> None:
        super().validate()
        if self.birth_date is None:
            self._fail("Birth date is required", "birth_date")
        if self.birth_date > (today or date.today()):
            self._fail("Birth date cannot be in the future", "birth_date", self.birth_date)


@dataclass
class Reminder(Entity):
    ENTITY_TYPE: ClassVar[str] = "reminder"

    reminder_type: ReminderType
    owner_id: str
    title: str
    due_date: date
    description: str = ""
    completed: bool = False
    completed_at: Optional[datetime] = None
    vaccination_record_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)
    synced_at: Optional[datetime] = None

    def validate(self) -> None:
        super().validate()
        if not self.owner_id:
            self._fail("Reminder must reference an owning case", "owner_id")
        if self.due_date is None:
            self._fail("Due date is required", "due_date")
        if self.completed and self.completed_at is None:
            self._fail("Completed reminder needs a completion time", "completed_at")
        if not self.completed and self.completed_at is not None:
            self._fail("Completion time set on an open reminder", "completed_at", self.completed_at)


@dataclass
class VaccinationRecord(Entity):
    ENTITY_TYPE: ClassVar[str] = "vaccination_record"

    child_id: str
    vaccine_name: str
    scheduled_date: date
    administered: bool = False
    administered_date: Optional[date] = None
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=utcnow)
    synced_at: Optional[datetime] = None

    def validate(self) -> None:
        super().validate()
        if self.administered_date is not None and not self.administered:
            self._fail(
                "Administered date set on a vaccine that was not administered",
                "administered_date",
                self.administered_date,
            )


# =============================================================================
# REGISTRY
# =============================================================================

ENTITY_CLASSES: Dict[str, Type[Entity]] = {
    cls.ENTITY_TYPE: cls
    for cls in (
        HealthcareCenter,
        EmergencyContact,
        HealthScheme,
        UserProfile,
        PregnancyCase,
        ChildRecord,
        Reminder,
        VaccinationRecord,
    )
}

REFERENCE_ENTITY_TYPES = tuple(t for t, c in ENTITY_CLASSES.items() if c.IS_REFERENCE)
USER_ENTITY_TYPES = tuple(t for t, c in ENTITY_CLASSES.items() if not c.IS_REFERENCE)


def entity_class(entity_type: str) -> Type[Entity]:
    """Look up the entity class registered for a type name."""
    try:
        return ENTITY_CLASSES[entity_type]
    except KeyError:
        raise ValidationFailure(
            f"Unknown entity type: {entity_type}",
            field="entity_type",
            value=entity_type,
        ) from None
