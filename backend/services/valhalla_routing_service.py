"""
Valhalla Routing Service for Hazard-Aware Navigation

Wraps a single Valhalla-compatible /route endpoint. Public Valhalla servers
enforce roughly one request per caller per second, so every outbound call
passes through a shared RequestThrottle.

Features:
- Route between two points with optional exclusion points (hazards)
- Optimal (with exclusions) vs. baseline (without) comparison
- Single retry without exclusions when the provider times out
- Summary and turn-by-turn extraction from Valhalla trip payloads

Author: Disaster Alert System
"""

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from utils.errors import RoutingProviderError
from utils.validators import RouteValidator

# Configure logging
logger = logging.getLogger(__name__)

Location = Dict[str, float]
RouteResponse = Dict[str, Any]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (built-in round() goes to even)."""
    return math.floor(value + 0.5)


class RequestThrottle:
    """
    Enforces a minimum interval between outbound provider calls.

    The last-request timestamp is guarded by a lock that is held across the
    wait, so concurrent callers queue up instead of racing on the same
    "time since last call" value. Calls beyond the interval block; they
    never fail.
    """

    def __init__(
        self,
        min_interval_seconds: float = 1.1,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._last_request_time: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """
        Block until the next call is allowed, then record it.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            waited = 0.0
            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self.min_interval_seconds:
                    waited = self.min_interval_seconds - elapsed
                    logger.info(f"⏱️ Throttling Valhalla request: waiting {waited * 1000:.0f}ms")
                    self._sleep(waited)
            self._last_request_time = self._clock()
            return waited


class ValhallaRoutingService:
    """
    Client for the Valhalla /route API.

    One instance should be shared per process so all calls go through the
    same throttle.
    """

    DEFAULT_BASE_URL = "https://valhalla1.openstreetmap.de"
    DEFAULT_TIMEOUT_SECONDS = 10
    DEFAULT_MIN_INTERVAL_SECONDS = 1.1

    UNITS = 'miles'

    # Provider-side failures worth one retry without exclusions
    GATEWAY_STATUS_CODES = {502, 503, 504}

    # Miami -> West Palm Beach, used by test_connection()
    TEST_START = {'lat': 25.7617, 'lon': -80.1918}
    TEST_END = {'lat': 26.7153, 'lon': -80.0534}

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS,
        throttle: Optional[RequestThrottle] = None
    ):
        """
        Initialize the Valhalla Routing Service.

        Args:
            base_url: Valhalla server root (default: public OSM Germany instance)
            timeout_seconds: Per-request timeout
            min_interval_seconds: Minimum spacing between outbound requests
            throttle: Optional pre-built throttle (tests inject a no-wait one)
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip('/')
        self.timeout_seconds = timeout_seconds
        self.throttle = throttle if throttle is not None else RequestThrottle(min_interval_seconds)
        logger.info(f"Valhalla Routing Service initialized ({self.base_url})")

    # ---- provider call ---------------------------------------------------

    @staticmethod
    def _extract_error_message(response) -> str:
        if response is None:
            return 'No response'
        try:
            payload = response.json()
        except ValueError:
            return (response.text or '')[:200]
        if isinstance(payload, dict):
            return str(payload.get('error') or payload.get('status') or payload)
        return str(payload)[:200]

    def calculate_route(self, request_body: Dict[str, Any]) -> RouteResponse:
        """
        POST a route request to Valhalla.

        Args:
            request_body: Valhalla request ({locations, costing, exclude?, directions_options?})

        Returns:
            Parsed Valhalla response containing 'trip'

        Raises:
            RoutingProviderError: On timeout, transport error, non-2xx status,
                malformed payload, or a non-zero trip.status
        """
        body = {
            **request_body,
            'directions_options': {
                'units': self.UNITS,
                **request_body.get('directions_options', {})
            }
        }

        self.throttle.wait()

        try:
            response = requests.post(
                f"{self.base_url}/route",
                json=body,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            logger.error(f"Valhalla request timed out after {self.timeout_seconds}s")
            raise RoutingProviderError(
                f"Valhalla request timed out after {self.timeout_seconds}s",
                status_code=504,
                is_gateway_error=True
            ) from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            detail = self._extract_error_message(e.response)
            logger.error(f"Valhalla API error: {status_code} {detail}")
            raise RoutingProviderError(
                f"Valhalla API error: {status_code} {detail}",
                status_code=status_code,
                is_gateway_error=status_code in self.GATEWAY_STATUS_CODES
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Valhalla request failed: {e}")
            raise RoutingProviderError(f"Valhalla request failed: {e}") from e

        try:
            route_data = response.json()
        except ValueError as e:
            raise RoutingProviderError(f"Invalid JSON from Valhalla: {e}") from e

        trip = route_data.get('trip') if isinstance(route_data, dict) else None
        if not isinstance(trip, dict):
            raise RoutingProviderError("Invalid response from Valhalla: missing trip")

        # Valhalla reports routing failures inside a 200 payload as well
        if trip.get('status') != 0:
            status_message = trip.get('status_message', 'Unknown error')
            raise RoutingProviderError(
                f"Route calculation failed: {status_message}",
                provider_status=trip.get('status')
            )

        summary = trip.get('summary')
        if not isinstance(summary, dict) or 'length' not in summary or 'time' not in summary:
            raise RoutingProviderError("Invalid response from Valhalla: missing trip summary")

        return route_data

    def route_with_exclusions(
        self,
        start: Location,
        end: Location,
        exclusions: List[Location],
        costing: str = 'auto'
    ) -> RouteResponse:
        """
        Route from start to end, avoiding the given exclusion points.

        Args:
            start: {'lat', 'lon'}
            end: {'lat', 'lon'}
            exclusions: List of {'lat', 'lon'} points to avoid (may be empty)
            costing: 'auto', 'bicycle' or 'pedestrian'
        """
        RouteValidator.validate_costing(costing)

        request_body: Dict[str, Any] = {
            'locations': [
                {'lat': start['lat'], 'lon': start['lon']},
                {'lat': end['lat'], 'lon': end['lon']}
            ],
            'costing': costing,
            'directions_options': {'units': self.UNITS}
        }

        if exclusions:
            request_body['exclude'] = {'locations': list(exclusions)}

        return self.calculate_route(request_body)

    def route_options(
        self,
        start: Location,
        end: Location,
        exclusions: List[Location],
        costing: str = 'auto'
    ) -> Dict[str, Any]:
        """
        Calculate the optimal (hazard-avoiding) and baseline routes.

        Calls run sequentially to respect the throttle. avoided_incidents is
        the number of exclusions supplied, not a measured path difference.

        If the optimal call fails with a timeout/gateway error, one route
        without exclusions is requested and used for both results.

        Returns:
            {'optimal': RouteResponse, 'baseline': RouteResponse, 'avoided_incidents': int}

        Raises:
            RoutingProviderError: The original error if the fallback also fails
        """
        try:
            logger.info("🛣️ Calculating optimal route with incident exclusions...")
            optimal = self.route_with_exclusions(start, end, exclusions, costing)
        except RoutingProviderError as error:
            if not error.is_gateway_error:
                raise

            logger.warning("⚠️ Valhalla timeout - trying simple route without exclusions...")
            try:
                simple_route = self.route_with_exclusions(start, end, [], costing)
            except RoutingProviderError as fallback_error:
                logger.error(f"Fallback route also failed: {fallback_error}")
                raise error

            return {
                'optimal': simple_route,
                'baseline': simple_route,
                'avoided_incidents': 0
            }

        logger.info("🛣️ Calculating baseline route without exclusions...")
        baseline = self.route_with_exclusions(start, end, [], costing)

        return {
            'optimal': optimal,
            'baseline': baseline,
            'avoided_incidents': len(exclusions)
        }

    # ---- response formatting ---------------------------------------------

    @staticmethod
    def summarize(route: RouteResponse) -> Dict[str, Any]:
        """Distance (0.1 mi), duration (whole minutes and seconds) and bounding box."""
        summary = route['trip']['summary']
        return {
            'distance_miles': round_half_up(summary['length'] * 10) / 10,
            'duration_minutes': round_half_up(summary['time'] / 60),
            'duration_seconds': summary['time'],
            'bounds': {
                'min_lat': summary.get('min_lat'),
                'min_lon': summary.get('min_lon'),
                'max_lat': summary.get('max_lat'),
                'max_lon': summary.get('max_lon')
            }
        }

    @staticmethod
    def extract_directions(route: RouteResponse) -> List[Dict[str, Any]]:
        """Flatten every leg's maneuvers, in order, into turn-by-turn steps."""
        directions = []
        for leg in route['trip'].get('legs', []):
            for maneuver in leg.get('maneuvers', []):
                step = {
                    'instruction': maneuver.get('instruction', ''),
                    'distance_miles': round_half_up(maneuver.get('length', 0) * 10) / 10,
                    'duration_seconds': round_half_up(maneuver.get('time', 0))
                }
                if maneuver.get('street_names'):
                    step['street_names'] = maneuver['street_names']
                directions.append(step)
        return directions

    @staticmethod
    def extract_geometry(route: RouteResponse) -> str:
        """Encoded polyline (precision 6) of the first leg, or '' if absent."""
        legs = route['trip'].get('legs') or []
        if not legs:
            return ''
        return legs[0].get('shape', '') or ''

    def format_route(self, route: RouteResponse) -> Dict[str, Any]:
        return {
            'summary': self.summarize(route),
            'directions': self.extract_directions(route),
            'geometry': self.extract_geometry(route)
        }

    def test_connection(self) -> Dict[str, Any]:
        """
        Smoke-test the provider with a fixed Miami -> West Palm Beach route.

        Raises:
            RoutingProviderError: If the provider call fails
        """
        route = self.route_with_exclusions(self.TEST_START, self.TEST_END, [])
        summary = self.summarize(route)
        return {
            'message': 'Valhalla routing is working!',
            'test_route': {
                'distance_miles': summary['distance_miles'],
                'duration_minutes': summary['duration_minutes'],
                'status': route['trip'].get('status_message')
            }
        }
