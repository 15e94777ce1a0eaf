"""
Incident Age Service

Parses incident timestamps and answers recency questions for the incident
store (24-hour hazard window, cleanup cutoffs, optional list filters).
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

Timestamp = Union[str, datetime]


class IncidentAgeService:
    """
    Helpers for time-based incident filtering.

    All comparisons are done in UTC; naive datetimes are assumed to be UTC.
    """

    # Hazards older than this are ignored for routing exclusions
    HAZARD_MAX_AGE_HOURS = 24.0

    # Upper bound accepted for the ?max_age_hours list filter (1 year)
    MAX_FILTER_HOURS = 8760.0

    @staticmethod
    def parse_timestamp(timestamp: Timestamp) -> datetime:
        """
        Parse an ISO 8601 string (or pass through a datetime) as an aware UTC datetime.

        Raises:
            ValueError: If timestamp is invalid or cannot be parsed
        """
        try:
            if isinstance(timestamp, str):
                parsed = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
            elif isinstance(timestamp, datetime):
                parsed = timestamp
            else:
                raise ValueError(f"Invalid timestamp type: {type(timestamp)}")
        except (ValueError, AttributeError, TypeError) as e:
            raise ValueError(f"Failed to parse timestamp '{timestamp}': {e}")

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def calculate_age_hours(timestamp: Timestamp, reference_time: Optional[datetime] = None) -> float:
        """
        Age in hours from timestamp to reference time (or now).

        Future timestamps yield 0.0 rather than a negative age.
        """
        created = IncidentAgeService.parse_timestamp(timestamp)

        if reference_time is None:
            reference_time = datetime.now(timezone.utc)
        elif reference_time.tzinfo is None:
            reference_time = reference_time.replace(tzinfo=timezone.utc)

        age_hours = (reference_time - created).total_seconds() / 3600.0
        return max(0.0, age_hours)

    @staticmethod
    def is_within_age(
        timestamp: Timestamp,
        max_age_hours: Optional[float],
        reference_time: Optional[datetime] = None
    ) -> bool:
        """
        True if the incident is at most max_age_hours old (inclusive).

        A max_age_hours of None disables the filter.
        """
        if max_age_hours is None:
            return True
        return IncidentAgeService.calculate_age_hours(timestamp, reference_time) <= max_age_hours

    @staticmethod
    def cleanup_cutoff(older_than_days: float, reference_time: Optional[datetime] = None) -> datetime:
        """Timestamp before which incidents are eligible for cleanup."""
        if reference_time is None:
            reference_time = datetime.now(timezone.utc)
        return reference_time - timedelta(days=older_than_days)

    @staticmethod
    def validate_max_age_filter(max_age_hours: Optional[float]) -> Optional[str]:
        """
        Validate the optional list filter.

        Returns:
            An error message, or None when the value is acceptable
        """
        if max_age_hours is None:
            return None
        if max_age_hours < 0:
            return 'max_age_hours must be non-negative'
        if max_age_hours > IncidentAgeService.MAX_FILTER_HOURS:
            return 'max_age_hours cannot exceed 8760 (1 year)'
        return None
