"""
Validation utilities for incident reports and route requests.

Provides centralized validation logic for:
- Coordinate ranges (latitude/longitude)
- Incident types (hazards vs. resources)
- Incident report payloads
- Route endpoint payloads and routing costing modes

Validators raise utils.errors.ValidationError with a field-level message so
the API layer can surface them as 400 responses.
"""
import html
import math
from typing import Any, Dict, Optional, Tuple

from bleach import clean

from utils.errors import ValidationError


def sanitize_text(text: str, max_length: int) -> str:
    """
    Remove all HTML tags from user-supplied text and cap its length.

    bleach escapes the surviving text for HTML; it is unescaped again so
    plain characters like "&" and "<" are stored as typed.

    Examples:
        >>> sanitize_text('<b>tree</b> down', 100)
        'tree down'
        >>> sanitize_text('Tree & wires < 5m from road', 100)
        'Tree & wires < 5m from road'
    """
    cleaned = html.unescape(clean(text, tags=[], strip=True))
    return cleaned[:max_length].strip()


class CoordinateValidator:
    """Validator for geographic coordinates."""

    @staticmethod
    def parse_number(value: Any, field: str) -> float:
        """
        Coerce a JSON/query value to float.

        Booleans are rejected even though Python treats them as ints.

        Raises:
            ValidationError: If the value is missing or not numeric
        """
        if value is None or value == '' or isinstance(value, bool):
            raise ValidationError(f'{field} is required and must be a number', field=field)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f'{field} must be a valid number', field=field)
        if math.isnan(number) or math.isinf(number):
            raise ValidationError(f'{field} must be a finite number', field=field)
        return number

    @staticmethod
    def parse_point(point: Any, name: str, lon_key: str = 'lon') -> Dict[str, float]:
        """
        Validate a {lat, lon} (or {lat, lng}) mapping and return normalized floats.

        Args:
            point: Mapping supplied by the caller
            name: Field name used in error messages (e.g. 'start')
            lon_key: Key holding the longitude ('lon' for routes, 'lng' for incidents)

        Returns:
            {'lat': float, lon_key: float}

        Raises:
            ValidationError: If the point is missing, non-numeric or out of range
        """
        if not isinstance(point, dict):
            raise ValidationError(f'{name} with lat and {lon_key} is required', field=name)

        lat = CoordinateValidator.parse_number(point.get('lat'), f'{name}.lat')
        lon = CoordinateValidator.parse_number(point.get(lon_key), f'{name}.{lon_key}')

        if not -90 <= lat <= 90:
            raise ValidationError(f'{name}.lat must be between -90 and 90', field=f'{name}.lat')
        if not -180 <= lon <= 180:
            raise ValidationError(
                f'{name}.{lon_key} must be between -180 and 180', field=f'{name}.{lon_key}'
            )

        return {'lat': lat, lon_key: lon}


class IncidentValidator:
    """Validator for incident types and report data."""

    # Hazard kinds exclude nearby road segments from routing
    HAZARD_TYPES = ('debris_road', 'downed_powerline')

    # Resource kinds describe available aid
    RESOURCE_TYPES = (
        'food_available',
        'gas_available',
        'power_available',
        'shelter_available'
    )

    VALID_TYPES = HAZARD_TYPES + RESOURCE_TYPES

    MAX_DESCRIPTION_LENGTH = 1000
    MAX_REPORTER_LENGTH = 50

    @staticmethod
    def validate_incident_type(incident_type: str) -> bool:
        """
        Validate incident type against the closed set.

        Examples:
            >>> IncidentValidator.validate_incident_type('debris_road')
            True
            >>> IncidentValidator.validate_incident_type('flood')
            False
        """
        if not incident_type or not isinstance(incident_type, str):
            return False
        return incident_type in IncidentValidator.VALID_TYPES

    @staticmethod
    def is_hazard(incident_type: str) -> bool:
        return incident_type in IncidentValidator.HAZARD_TYPES

    @staticmethod
    def validate_report_data(
        incident_type: Any,
        description: Any,
        location: Optional[Dict[str, Any]] = None
    ) -> Tuple[str, str, Optional[Dict[str, float]]]:
        """
        Validate a report submission and return normalized values.

        Checks:
        - Required fields (type, description)
        - Incident type validity
        - Optional location shape and coordinate ranges

        Returns:
            (type, stripped description, normalized location or None)

        Raises:
            ValidationError: On the first failing check
        """
        if isinstance(description, str):
            description = sanitize_text(description, IncidentValidator.MAX_DESCRIPTION_LENGTH)

        missing = []
        if not incident_type:
            missing.append('type')
        if not isinstance(description, str) or not description:
            missing.append('description')
        if missing:
            raise ValidationError(
                f'Missing required fields: {", ".join(missing)}',
                field=missing[0]
            )

        if not IncidentValidator.validate_incident_type(incident_type):
            valid_types_str = ', '.join(IncidentValidator.VALID_TYPES)
            raise ValidationError(
                f'Invalid incident type. Must be one of: {valid_types_str}',
                field='type'
            )

        normalized_location = None
        if location is not None:
            normalized_location = CoordinateValidator.parse_point(location, 'location', lon_key='lng')

        return incident_type, description, normalized_location

    @staticmethod
    def sanitize_reporter(reported_by: Any) -> Optional[str]:
        """Strip HTML from an attribution string; None if nothing usable remains."""
        if not isinstance(reported_by, str):
            return None
        return sanitize_text(reported_by, IncidentValidator.MAX_REPORTER_LENGTH) or None


class RouteValidator:
    """Validator for route calculation requests."""

    VALID_COSTING = ('auto', 'bicycle', 'pedestrian')

    # Larger corridors pull in hazards far from any plausible path
    MAX_BUFFER_KM = 100

    @staticmethod
    def validate_costing(costing: Any) -> str:
        if costing not in RouteValidator.VALID_COSTING:
            raise ValidationError(
                f'costing must be one of: {", ".join(RouteValidator.VALID_COSTING)}',
                field='costing'
            )
        return costing

    @staticmethod
    def validate_buffer_km(buffer_km: Any) -> float:
        buffer_value = CoordinateValidator.parse_number(buffer_km, 'buffer_km')
        if not 0 <= buffer_value <= RouteValidator.MAX_BUFFER_KM:
            raise ValidationError(
                f'buffer_km must be between 0 and {RouteValidator.MAX_BUFFER_KM}',
                field='buffer_km'
            )
        return buffer_value

    @staticmethod
    def validate_endpoints(start: Any, end: Any) -> Tuple[Dict[str, float], Dict[str, float]]:
        """
        Validate both route endpoints before any routing work.

        Raises:
            ValidationError: 'Missing required fields: ...' if either endpoint is absent
        """
        missing = [name for name, point in (('start', start), ('end', end)) if not point]
        if missing:
            raise ValidationError(
                'Missing required fields: start and end locations with lat/lon',
                field=missing[0]
            )
        return (
            CoordinateValidator.parse_point(start, 'start'),
            CoordinateValidator.parse_point(end, 'end')
        )
