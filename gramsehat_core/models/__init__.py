# =============================================================================
# gramsehat_core/models/__init__.py
# Domain Entities
# =============================================================================

from gramsehat_core.models.entities import (
    SUPPORTED_LANGUAGES,
    Entity,
    HealthcareCenter,
    EmergencyContact,
    EligibilityCriteria,
    HealthScheme,
    UserProfile,
    PregnancyCase,
    ChildRecord,
    Reminder,
    VaccinationRecord,
    FacilityType,
    EmergencyServiceType,
    IncomeCategory,
    RationCardType,
    ReminderType,
    ENTITY_CLASSES,
    REFERENCE_ENTITY_TYPES,
    USER_ENTITY_TYPES,
    entity_class,
    new_id,
    utcnow,
    parse_timestamp,
    parse_date,
)

__all__ = [
    "SUPPORTED_LANGUAGES",
    "Entity",
    "HealthcareCenter",
    "EmergencyContact",
    "EligibilityCriteria",
    "HealthScheme",
    "UserProfile",
    "PregnancyCase",
    "ChildRecord",
    "Reminder",
    "VaccinationRecord",
    "FacilityType",
    "EmergencyServiceType",
    "IncomeCategory",
    "RationCardType",
    "ReminderType",
    "ENTITY_CLASSES",
    "REFERENCE_ENTITY_TYPES",
    "USER_ENTITY_TYPES",
    "entity_class",
    "new_id",
    "utcnow",
    "parse_timestamp",
    "parse_date",
]
