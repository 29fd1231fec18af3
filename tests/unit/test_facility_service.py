# =============================================================================
# tests/unit/test_facility_service.py
# Unit Tests for Facility and Emergency Lookup
# =============================================================================

import pytest
from unittest.mock import MagicMock


BARMER_TOWN = (25.7500, 71.3900)


@pytest.fixture
def facilities(local_db, store_reference, sample_centers, sample_contacts):
    from gramsehat_core.services import FacilityService

    store_reference(*sample_centers, *sample_contacts)
    return FacilityService(local_db)


class TestHaversine:
    """Test great-circle distance"""

    def test_one_degree_of_latitude(self):
        from gramsehat_core.services import Coordinate, haversine_km

        distances = haversine_km(Coordinate(0.0, 0.0), [1.0], [0.0])

        assert distances[0] == pytest.approx(111.19, abs=0.05)

    def test_zero_distance_to_self(self):
        from gramsehat_core.services import Coordinate, haversine_km

        distances = haversine_km(Coordinate(25.75, 71.39), [25.75], [71.39])

        assert distances[0] == pytest.approx(0.0)


class TestNearest:
    """Test distance ranking"""

    def test_ranked_by_distance(self, facilities):
        from gramsehat_core.services import Coordinate

        ranked = facilities.nearest(position=Coordinate(*BARMER_TOWN))

        assert [r.center.name for r in ranked] == [
            "Barmer District Hospital",
            "Gadra Road PHC",
            "Jaisalmer CHC",
        ]
        distances = [r.distance_km for r in ranked]
        assert distances == sorted(distances)

    def test_equal_distances_keep_store_order(self, local_db, store_reference):
        from gramsehat_core.models import FacilityType, HealthcareCenter
        from gramsehat_core.services import Coordinate, FacilityService

        twins = [
            HealthcareCenter(name=name, facility_type=FacilityType.SUB_CENTER,
                             latitude=25.0, longitude=71.0, district="Barmer")
            for name in ("First", "Second", "Third")
        ]
        store_reference(*twins)

        ranked = FacilityService(local_db).nearest(position=Coordinate(25.5, 71.0))

        assert [r.center.name for r in ranked] == ["First", "Second", "Third"]

    def test_limit_and_service_filter(self, facilities):
        from gramsehat_core.services import Coordinate

        ranked = facilities.nearest(position=Coordinate(*BARMER_TOWN), limit=1, service="maternity")

        assert [r.center.name for r in ranked] == ["Barmer District Hospital"]

    def test_zero_limit_returns_nothing(self, facilities):
        from gramsehat_core.services import Coordinate

        assert facilities.nearest(position=Coordinate(*BARMER_TOWN), limit=0) == []
        assert facilities.nearest(limit=0, district="Barmer") == []

    def test_negative_limit_rejected(self, facilities):
        from gramsehat_core.errors import ValidationFailure

        with pytest.raises(ValidationFailure):
            facilities.nearest(limit=-1)

    def test_district_only_narrows_fallback_listing(self, facilities):
        from gramsehat_core.services import Coordinate

        ranked = facilities.nearest(position=Coordinate(*BARMER_TOWN), district="Barmer")
        listed = facilities.nearest(district="Barmer")

        assert "Jaisalmer CHC" in [r.center.name for r in ranked]
        assert "Jaisalmer CHC" not in [r.center.name for r in listed]

    def test_facility_type_filter(self, facilities):
        from gramsehat_core.models import FacilityType
        from gramsehat_core.services import Coordinate

        ranked = facilities.nearest(
            position=Coordinate(*BARMER_TOWN),
            facility_type=FacilityType.COMMUNITY_HEALTH_CENTER,
        )

        assert [r.center.name for r in ranked] == ["Jaisalmer CHC"]

    def test_position_from_location_provider(self, local_db, store_reference, sample_centers):
        from gramsehat_core.services import Coordinate, FacilityService

        store_reference(*sample_centers)
        gps = MagicMock()
        gps.current_position.return_value = Coordinate(26.91, 70.91)

        ranked = FacilityService(local_db, location_provider=gps).nearest()

        assert ranked[0].center.name == "Jaisalmer CHC"
        gps.current_position.assert_called_once()

    def test_fallback_to_district_listing(self, local_db, store_reference, sample_centers):
        """No position: district listing in store order, no distances"""
        from gramsehat_core.services import FacilityService

        store_reference(*sample_centers)
        gps = MagicMock()
        gps.current_position.return_value = None

        listing = FacilityService(local_db, location_provider=gps).nearest(district="barmer")

        assert [r.center.name for r in listing] == ["Barmer District Hospital", "Gadra Road PHC"]
        assert all(r.distance_km is None for r in listing)

    def test_empty_store(self, local_db):
        from gramsehat_core.services import Coordinate, FacilityService

        assert FacilityService(local_db).nearest(position=Coordinate(*BARMER_TOWN)) == []


class TestDirectories:
    """Test district and emergency listings"""

    def test_by_district(self, facilities):
        assert [c.name for c in facilities.by_district("Jaisalmer")] == ["Jaisalmer CHC"]

    def test_emergency_contacts_include_nationwide(self, facilities):
        contacts = facilities.emergency_contacts(district="Barmer")

        assert [c.service_name for c in contacts] == ["National Ambulance", "Barmer Police Control Room"]

    def test_emergency_contacts_by_service_type(self, facilities):
        from gramsehat_core.models import EmergencyServiceType

        contacts = facilities.emergency_contacts(service_type=EmergencyServiceType.POLICE)

        assert len(contacts) == 2
        assert all(c.service_type == EmergencyServiceType.POLICE for c in contacts)

    def test_to_dataframe_sorted_by_distance(self, facilities):
        from gramsehat_core.services import Coordinate

        df = facilities.to_dataframe(Coordinate(*BARMER_TOWN))

        assert list(df["name"]) == ["Barmer District Hospital", "Gadra Road PHC", "Jaisalmer CHC"]
        assert df["distance_km"].is_monotonic_increasing
