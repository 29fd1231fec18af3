# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from gramsehat_core.api import MockRemoteEndpoint
from gramsehat_core.models import (
    EligibilityCriteria,
    EmergencyContact,
    EmergencyServiceType,
    FacilityType,
    HealthcareCenter,
    HealthScheme,
    IncomeCategory,
    RationCardType,
    UserProfile,
)
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.offline.outbox import Outbox
from gramsehat_core.offline.repository import UserDataRepository


FIXED_NOW = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def local_db(tmp_path):
    """Fresh SQLite store in a temporary directory"""
    db = LocalDatabase(tmp_path / "gramsehat.db")
    yield db
    db.close()


@pytest.fixture
def clock():
    """Fixed device clock"""
    return lambda: FIXED_NOW


@pytest.fixture
def outbox(local_db, clock):
    return Outbox(local_db, clock=clock)


@pytest.fixture
def repository(local_db, outbox, clock):
    return UserDataRepository(local_db, outbox, clock=clock)


@pytest.fixture
def remote():
    """In-memory remote endpoint with a deterministic server clock"""
    return MockRemoteEndpoint()


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def senior_pension_scheme():
    """Scheme for seniors holding a BPL or Antyodaya ration card"""
    return HealthScheme(
        name="Senior Citizen Health Cover",
        localized_names={"hi": "वरिष्ठ नागरिक स्वास्थ्य योजना"},
        criteria=EligibilityCriteria(
            min_age=60,
            requires_ration_card=True,
            allowed_card_types=[RationCardType.BPL, RationCardType.ANTYODAYA],
        ),
        benefits=["Free OPD consultation"],
    )


@pytest.fixture
def maternity_scheme():
    return HealthScheme(
        name="Janani Suraksha Yojana",
        criteria=EligibilityCriteria(
            gender="female",
            is_for_pregnant_women=True,
            max_income=100_000,
        ),
    )


@pytest.fixture
def senior_profile():
    return UserProfile(
        age=62,
        gender="male",
        income_category=IncomeCategory.BPL,
        has_ration_card=True,
        ration_card_type=RationCardType.BPL,
        district="Barmer",
        village="Gadra Road",
        preferred_language="hi",
    )


@pytest.fixture
def pregnant_profile():
    return UserProfile(
        age=26,
        gender="Female",
        income_category=IncomeCategory.LOW,
        is_pregnant=True,
        district="Barmer",
    )


@pytest.fixture
def sample_centers():
    """Three facilities around Barmer, Rajasthan"""
    return [
        HealthcareCenter(
            name="Barmer District Hospital",
            facility_type=FacilityType.DISTRICT_HOSPITAL,
            latitude=25.7521,
            longitude=71.3967,
            district="Barmer",
            services=["Emergency", "Maternity"],
        ),
        HealthcareCenter(
            name="Gadra Road PHC",
            facility_type=FacilityType.PRIMARY_HEALTH_CENTER,
            latitude=25.7300,
            longitude=70.6200,
            district="Barmer",
            services=["Immunisation"],
        ),
        HealthcareCenter(
            name="Jaisalmer CHC",
            facility_type=FacilityType.COMMUNITY_HEALTH_CENTER,
            latitude=26.9157,
            longitude=70.9083,
            district="Jaisalmer",
            services=["Maternity"],
        ),
    ]


@pytest.fixture
def sample_contacts():
    return [
        EmergencyContact(
            service_name="National Ambulance",
            phone_number="108",
            service_type=EmergencyServiceType.AMBULANCE,
        ),
        EmergencyContact(
            service_name="Barmer Police Control Room",
            phone_number="02982-220100",
            service_type=EmergencyServiceType.POLICE,
            district="Barmer",
        ),
        EmergencyContact(
            service_name="Jaisalmer Police Control Room",
            phone_number="02992-252300",
            service_type=EmergencyServiceType.POLICE,
            district="Jaisalmer",
        ),
    ]


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value = MagicMock()
    return mock_client


# =============================================================================
# HELPER FIXTURES
# =============================================================================

@pytest.fixture
def store_reference(local_db):
    """Write reference entities directly, as the download pass would"""
    def _store(*entities):
        for entity in entities:
            local_db.put(entity)
        return list(entities)
    return _store
