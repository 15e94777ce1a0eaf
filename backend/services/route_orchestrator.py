"""
Route Orchestrator

Composes the exclusion resolver and the Valhalla routing service into a
single route-calculation request/response cycle.
"""

import logging
import time
from typing import Any, Dict, List

from services.exclusion_resolver import ExclusionResolver
from services.valhalla_routing_service import ValhallaRoutingService
from utils.validators import RouteValidator

logger = logging.getLogger(__name__)


class RouteOrchestrator:
    """Validates a route request, gathers hazard exclusions and packages both routes."""

    DEFAULT_BUFFER_KM = 2.0

    def __init__(self, exclusion_resolver: ExclusionResolver, routing_service: ValhallaRoutingService):
        self.exclusion_resolver = exclusion_resolver
        self.routing_service = routing_service

    def _resolve_exclusions(self, start, end, buffer_km: float) -> List[Dict[str, float]]:
        # Routing must still be attempted if hazards cannot be read
        try:
            exclusions = self.exclusion_resolver.resolve_exclusions(start, end, buffer_km)
            logger.info(f"🚧 Found {len(exclusions)} incidents to avoid along route")
            return exclusions
        except Exception as e:
            logger.error(f"Error getting incident exclusions: {e}", exc_info=True)
            return []

    def calculate_route(
        self,
        start: Any,
        end: Any,
        costing: Any = 'auto',
        avoid_incidents: bool = True,
        buffer_km: Any = DEFAULT_BUFFER_KM
    ) -> Dict[str, Any]:
        """
        Calculate the hazard-avoiding route plus a baseline for comparison.

        Args:
            start: {'lat', 'lon'} route start
            end: {'lat', 'lon'} route end
            costing: 'auto', 'bicycle' or 'pedestrian'
            avoid_incidents: Whether to look up hazard exclusions
            buffer_km: Corridor buffer used for the hazard lookup

        Returns:
            {
                optimal_route: {summary, directions, geometry},
                baseline_route: {summary, directions, geometry},
                avoided_incidents: int,
                exclusions_used: [{lat, lon}],
                calculation_time_ms: int
            }

        Raises:
            ValidationError: Before any work if inputs are missing or malformed
            RoutingProviderError: If Valhalla cannot produce a route
        """
        start_time = time.time()

        start, end = RouteValidator.validate_endpoints(start, end)
        costing = RouteValidator.validate_costing(costing)
        buffer_km = RouteValidator.validate_buffer_km(buffer_km)

        exclusions: List[Dict[str, float]] = []
        if avoid_incidents:
            exclusions = self._resolve_exclusions(start, end, buffer_km)

        options = self.routing_service.route_options(start, end, exclusions, costing)

        optimal_route = self.routing_service.format_route(options['optimal'])
        result = {
            'optimal_route': optimal_route,
            'baseline_route': self.routing_service.format_route(options['baseline']),
            'avoided_incidents': options['avoided_incidents'],
            'exclusions_used': exclusions,
            'calculation_time_ms': int((time.time() - start_time) * 1000)
        }

        logger.info(
            f"Route calculated: {optimal_route['summary']['distance_miles']} miles, "
            f"{optimal_route['summary']['duration_minutes']} minutes, "
            f"avoided {result['avoided_incidents']} incidents in {result['calculation_time_ms']}ms"
        )
        return result

    def calculate_simple_route(self, start: Any, end: Any, costing: Any = 'auto') -> Dict[str, Any]:
        """
        Single route without any exclusion logic.

        Returns:
            {summary, directions, geometry}
        """
        start, end = RouteValidator.validate_endpoints(start, end)
        costing = RouteValidator.validate_costing(costing)

        route = self.routing_service.route_with_exclusions(start, end, [], costing)
        return self.routing_service.format_route(route)
