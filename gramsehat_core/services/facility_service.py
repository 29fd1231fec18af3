# =============================================================================
# gramsehat_core/services/facility_service.py
# Healthcare Facility and Emergency Contact Lookup
# =============================================================================
"""
Offline facility lookup over the reference data in the local store.

Distance ranking uses straight-line (great-circle) distance from the
position supplied by the location capability. When no position is
available, lookups fall back to a district listing in store order.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

from gramsehat_core.errors import ValidationFailure
from gramsehat_core.models import (
    EmergencyContact,
    EmergencyServiceType,
    FacilityType,
    HealthcareCenter,
)
from gramsehat_core.offline.local_database import LocalDatabase
from gramsehat_core.services.base_service import BaseService


EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


class LocationProvider(Protocol):
    """GPS or manual location entry; returns None when unavailable."""

    def current_position(self) -> Optional[Coordinate]:
        ...


@dataclass
class RankedFacility:
    center: HealthcareCenter
    distance_km: Optional[float] = None


def haversine_km(
    origin: Coordinate,
    latitudes: Sequence[float],
    longitudes: Sequence[float],
) -> np.ndarray:
    """
    Great-circle distance in km from origin to each (lat, lng) pair.

    Args:
        origin: Reference position
        latitudes: Latitudes in degrees
        longitudes: Longitudes in degrees

    Returns:
        Array of distances, same length as the inputs
    """
    lat1 = np.radians(origin.latitude)
    lng1 = np.radians(origin.longitude)
    lat2 = np.radians(np.asarray(latitudes, dtype=float))
    lng2 = np.radians(np.asarray(longitudes, dtype=float))

    a = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def _same_district(a: str, b: Optional[str]) -> bool:
    return bool(b) and a.strip().lower() == b.strip().lower()


class FacilityService(BaseService):
    """
    Usage:
        service = FacilityService(local_db, location_provider=gps)
        for ranked in service.nearest(limit=5, facility_type=FacilityType.PRIMARY_HEALTH_CENTER):
            print(ranked.center.name, ranked.distance_km)
    """

    def __init__(
        self,
        db: LocalDatabase,
        location_provider: Optional[LocationProvider] = None,
    ):
        super().__init__()
        self._db = db
        self._location_provider = location_provider

    def current_position(self) -> Optional[Coordinate]:
        if self._location_provider is None:
            return None
        return self._location_provider.current_position()

    def nearest(
        self,
        position: Optional[Coordinate] = None,
        limit: Optional[int] = None,
        facility_type: Optional[FacilityType] = None,
        service: Optional[str] = None,
        district: Optional[str] = None,
    ) -> List[RankedFacility]:
        """
        Facilities ranked by distance ascending; equal distances keep store order.

        Without a position (none passed and the location capability returns
        None) the result is the district listing, unranked. ``district`` only
        applies to that fallback; with a position, facilities in every
        district are ranked. ``limit=None`` returns every match; ``limit=0`` returns none.
        """
        if limit is not None and limit < 0:
            raise ValidationFailure("Limit must not be negative", field="limit", value=limit)
        position = position or self.current_position()
        centers = self._filtered(facility_type, service)

        if position is None:
            self.logger.info("Location unavailable, falling back to district listing")
            listing = [c for c in centers if district is None or _same_district(c.district, district)]
            ranked = [RankedFacility(center=c) for c in listing]
            return ranked[:limit] if limit is not None else ranked

        if not centers:
            return []

        distances = haversine_km(
            position,
            [c.latitude for c in centers],
            [c.longitude for c in centers],
        )
        order = np.argsort(distances, kind="stable")
        ranked = [RankedFacility(center=centers[i], distance_km=float(distances[i])) for i in order]
        return ranked[:limit] if limit is not None else ranked

    def by_district(self, district: str) -> List[HealthcareCenter]:
        return self._db.query(
            HealthcareCenter.ENTITY_TYPE,
            lambda c: _same_district(c.district, district),
        )

    def emergency_contacts(
        self,
        district: Optional[str] = None,
        service_type: Optional[EmergencyServiceType] = None,
    ) -> List[EmergencyContact]:
        """
        Emergency numbers for a district; contacts without a district are
        nationwide and always included.
        """
        def matches(contact: EmergencyContact) -> bool:
            if service_type is not None and contact.service_type != service_type:
                return False
            if district is None or not contact.district:
                return True
            return _same_district(contact.district, district)

        return self._db.query(EmergencyContact.ENTITY_TYPE, matches)

    def to_dataframe(self, position: Optional[Coordinate] = None) -> pd.DataFrame:
        """Facility table, with a distance_km column when a position is known."""
        df = self._db.to_dataframe(HealthcareCenter.ENTITY_TYPE)
        if df.empty or position is None:
            return df
        df["distance_km"] = haversine_km(position, df["latitude"], df["longitude"])
        return df.sort_values("distance_km", kind="stable").reset_index(drop=True)

    def _filtered(
        self,
        facility_type: Optional[FacilityType],
        service: Optional[str],
    ) -> List[HealthcareCenter]:
        def matches(center: HealthcareCenter) -> bool:
            if facility_type is not None and center.facility_type != facility_type:
                return False
            if service is not None:
                wanted = service.strip().lower()
                return any(s.strip().lower() == wanted for s in center.services)
            return True

        return self._db.query(HealthcareCenter.ENTITY_TYPE, matches)
