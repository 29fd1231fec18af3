# =============================================================================
# gramsehat_core/services/__init__.py
# Service Layer for GramSehat
# =============================================================================
"""
Service Layer for GramSehat

Local business logic over the entity store. Nothing here touches the
network, so every service works offline.

Usage Example:
-------------
    from gramsehat_core.services import EligibilityEngine, ReminderScheduler

    engine = EligibilityEngine(local_db)
    for result in engine.evaluate(profile):
        print(result.scheme.name, result.matched, result.reasons)

    scheduler = ReminderScheduler(repository)
    reminders, records = scheduler.create_child_schedule(child.id, child.birth_date)
"""

from .base_service import BaseService, ServiceResult
from .eligibility_service import (
    EligibilityEngine,
    EligibilityResult,
    INCOME_CATEGORY_CEILINGS,
    evaluate_criteria,
)
from .reminder_service import (
    ReminderScheduler,
    ReminderStatus,
    CHILD_VACCINATION_SCHEDULE,
)
from .facility_service import (
    FacilityService,
    Coordinate,
    LocationProvider,
    RankedFacility,
    haversine_km,
)
from .command_service import Command, CommandDispatcher, CommandType

__all__ = [
    # Base classes
    "BaseService",
    "ServiceResult",
    # Eligibility
    "EligibilityEngine",
    "EligibilityResult",
    "INCOME_CATEGORY_CEILINGS",
    "evaluate_criteria",
    # Reminders
    "ReminderScheduler",
    "ReminderStatus",
    "CHILD_VACCINATION_SCHEDULE",
    # Facilities
    "FacilityService",
    "Coordinate",
    "LocationProvider",
    "RankedFacility",
    "haversine_km",
    # Commands
    "Command",
    "CommandDispatcher",
    "CommandType",
]
