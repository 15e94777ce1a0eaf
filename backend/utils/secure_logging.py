"""
Secure logging helpers.

Incident reports carry precise coordinates and optional attribution, neither
of which should land in logs verbatim.

Usage:
    from utils.secure_logging import redact_coordinates, hash_user_id

    lat, lng = redact_coordinates(incident.lat, incident.lng)
    logger.info(f"New incident reported: {incident.type} at [{lat}, {lng}]")
    logger.info(f"Reported by {hash_user_id(incident.reported_by)}")
"""

import hashlib
from typing import Optional, Tuple

ANONYMOUS_REPORTER = 'Anonymous'


def redact_coordinates(lat: Optional[float], lon: Optional[float], precision: int = 2) -> Tuple[str, str]:
    """
    Round coordinates to a safe precision level for logging.

    Precision levels:
    - 1 decimal: ~11 km (city level)
    - 2 decimals: ~1.1 km (neighborhood level) **RECOMMENDED**
    - 4+ decimals: ~11 m (building level) **TOO PRECISE FOR LOGS**

    Examples:
        >>> redact_coordinates(26.1224, -80.1373)
        ('26.12', '-80.14')

        >>> redact_coordinates(None, None)
        ('[REDACTED]', '[REDACTED]')
    """
    if lat is None or lon is None:
        return ('[REDACTED]', '[REDACTED]')

    return (
        f"{lat:.{precision}f}",
        f"{lon:.{precision}f}"
    )


def hash_user_id(user_id: Optional[str], length: int = 16) -> str:
    """
    Create a one-way hash of a reporter attribution for logging.

    The anonymous marker is passed through unchanged since it identifies nobody.

    Examples:
        >>> hash_user_id('Anonymous')
        'Anonymous'
        >>> len(hash_user_id('neighbor-42'))
        16
    """
    if not user_id:
        return '[NO_USER_ID]'
    if user_id == ANONYMOUS_REPORTER:
        return user_id

    return hashlib.sha256(user_id.encode()).hexdigest()[:length]
