"""
Exclusion Resolver

Turns recent hazard reports near a route corridor into the exclusion
points the routing engine understands ({lat, lon}).
"""

import logging
from typing import Dict, List, Optional

from services.incident_age import IncidentAgeService
from services.incident_store import Incident, IncidentStore
from utils.geo import route_bounds
from utils.secure_logging import redact_coordinates

logger = logging.getLogger(__name__)

ExclusionPoint = Dict[str, float]


class ExclusionResolver:
    """
    Reads hazards from an IncidentStore and formats them as routing exclusions.

    Two paths are kept deliberately separate:
    - resolve_exclusions(): hazards inside the buffered route corridor
    - resolve_all_recent_exclusions(): every recent hazard, for callers that
      do not supply a corridor
    """

    DEFAULT_BUFFER_KM = 2.0

    def __init__(self, store: IncidentStore, max_age_hours: float = IncidentAgeService.HAZARD_MAX_AGE_HOURS):
        self.store = store
        self.max_age_hours = max_age_hours

    @staticmethod
    def to_exclusions(incidents: List[Incident]) -> List[ExclusionPoint]:
        return [incident.to_exclusion() for incident in incidents]

    def resolve_exclusions(
        self,
        start: Optional[Dict[str, float]],
        end: Optional[Dict[str, float]],
        buffer_km: float = DEFAULT_BUFFER_KM
    ) -> List[ExclusionPoint]:
        """
        Exclusion points for recent hazards along a route corridor.

        Args:
            start: {'lat', 'lon'} route start, or None
            end: {'lat', 'lon'} route end, or None
            buffer_km: Corridor buffer in kilometers

        Returns:
            List of {'lat', 'lon'} points. Falls back to all recent hazards
            when either endpoint is missing.
        """
        if not start or not end:
            logger.info("No route corridor supplied - returning all recent hazards")
            return self.resolve_all_recent_exclusions()

        bounds = route_bounds(start['lat'], start['lon'], end['lat'], end['lon'], buffer_km)
        hazards = self.store.query_hazards_near(bounds, self.max_age_hours)
        exclusions = self.to_exclusions(hazards)

        start_lat, start_lon = redact_coordinates(start['lat'], start['lon'])
        end_lat, end_lon = redact_coordinates(end['lat'], end['lon'])
        logger.info(
            f"Found {len(exclusions)} route exclusions for "
            f"{start_lat},{start_lon} to {end_lat},{end_lon} (buffer {buffer_km}km)"
        )
        return exclusions

    def resolve_all_recent_exclusions(self) -> List[ExclusionPoint]:
        """Exclusion points for every hazard within the recency window."""
        hazards = self.store.list_recent_hazards(self.max_age_hours)
        exclusions = self.to_exclusions(hazards)
        logger.info(f"Returning {len(exclusions)} exclusion coordinates (all recent hazards)")
        return exclusions
