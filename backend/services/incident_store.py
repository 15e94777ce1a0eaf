"""
Incident Store for Community Hazard Reports

Holds hazard and resource reports and answers the spatial/recency queries
used to build routing exclusions.

Two interchangeable backends satisfy the same contract:
- InMemoryIncidentStore: process-local list with a grid bucket index
- PersistentIncidentStore: Firebase Realtime Database, with an in-memory
  fallback used whenever Firebase cannot be reached

The backend is selected once at startup by create_incident_store().

Author: Disaster Alert System
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from services.incident_age import IncidentAgeService
from utils.errors import StorageError
from utils.geo import SpatialBounds, bucket_in_bounds, bucket_key, filter_by_distance
from utils.secure_logging import ANONYMOUS_REPORTER, hash_user_id, redact_coordinates
from utils.validators import IncidentValidator

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Incident:
    """An immutable incident report."""
    id: str
    lat: float
    lng: float
    type: str
    description: str
    timestamp: datetime
    reported_by: str = ANONYMOUS_REPORTER

    @property
    def is_hazard(self) -> bool:
        return IncidentValidator.is_hazard(self.type)

    def to_dict(self) -> Dict[str, Any]:
        """API/storage representation (camelCase reportedBy, ISO timestamp)."""
        return {
            'id': self.id,
            'lat': self.lat,
            'lng': self.lng,
            'type': self.type,
            'description': self.description,
            'timestamp': self.timestamp.isoformat(),
            'reportedBy': self.reported_by
        }

    def to_exclusion(self) -> Dict[str, float]:
        """Routing-engine exclusion point; the provider expects 'lon', not 'lng'."""
        return {'lat': self.lat, 'lon': self.lng}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Incident':
        """
        Rebuild an incident from its stored representation.

        Raises:
            ValueError: If required fields are missing or malformed
        """
        try:
            return cls(
                id=str(data['id']),
                lat=float(data['lat']),
                lng=float(data['lng']),
                type=data['type'],
                description=data['description'],
                timestamp=IncidentAgeService.parse_timestamp(data['timestamp']),
                reported_by=data.get('reportedBy') or ANONYMOUS_REPORTER
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed incident record: {e}")


def deduplicate_incidents(incidents: Iterable[Incident]) -> List[Incident]:
    """
    Keep one incident per id, preferring the latest timestamp.

    First-seen order of ids is preserved.
    """
    unique: Dict[str, Incident] = {}
    for incident in incidents:
        existing = unique.get(incident.id)
        if existing is None or incident.timestamp > existing.timestamp:
            unique[incident.id] = incident
    return list(unique.values())


class IncidentStore(ABC):
    """
    Contract shared by every incident backend.

    Query methods return exact results: backends that can only narrow
    candidates must re-check type, bounds and age before returning.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or _utc_now

    # ---- public contract -------------------------------------------------

    def create(
        self,
        incident_type: Any,
        description: Any,
        location: Optional[Dict[str, Any]] = None,
        reported_by: Optional[str] = None
    ) -> Incident:
        """
        Validate and store a new incident report.

        Args:
            incident_type: One of IncidentValidator.VALID_TYPES
            description: Non-empty free text
            location: Optional {'lat', 'lng'}; defaults to (0, 0) when omitted
            reported_by: Optional attribution; defaults to 'Anonymous'

        Returns:
            The stored Incident with server-assigned id and timestamp

        Raises:
            ValidationError: If type/description are missing or invalid
        """
        incident_type, description, normalized = IncidentValidator.validate_report_data(
            incident_type, description, location
        )

        if normalized is None:
            logger.warning("Incident submitted without location - defaulting to (0, 0)")
            normalized = {'lat': 0.0, 'lng': 0.0}

        incident = Incident(
            id=str(uuid.uuid4()),
            lat=normalized['lat'],
            lng=normalized['lng'],
            type=incident_type,
            description=description,
            timestamp=self._clock(),
            reported_by=IncidentValidator.sanitize_reporter(reported_by) or ANONYMOUS_REPORTER
        )

        self._persist(incident)

        lat_str, lng_str = redact_coordinates(incident.lat, incident.lng)
        logger.info(
            f"New incident reported: {incident.type} at [{lat_str}, {lng_str}] "
            f"by {hash_user_id(incident.reported_by)}"
        )
        return incident

    @staticmethod
    def index(incident: Incident) -> Tuple[Incident, str]:
        """Indexing function: the incident paired with its derived bucket key."""
        return incident, bucket_key(incident.lat, incident.lng)

    @abstractmethod
    def list_all(self, max_age_hours: Optional[float] = None) -> List[Incident]:
        """All incidents in insertion order, optionally limited by age."""

    def list_near(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        max_age_hours: Optional[float] = None
    ) -> List[Incident]:
        """Incidents of any type within radius_km (great-circle) of a point."""
        return filter_by_distance(self.list_all(max_age_hours), lat, lng, radius_km)

    @abstractmethod
    def query_hazards_near(self, bounds: SpatialBounds, max_age_hours: float) -> List[Incident]:
        """Hazard incidents inside bounds (inclusive) and at most max_age_hours old."""

    @abstractmethod
    def list_recent_hazards(self, max_age_hours: float) -> List[Incident]:
        """Hazard incidents at most max_age_hours old, regardless of location."""

    @abstractmethod
    def cleanup_old_incidents(self, older_than_days: float = 7) -> int:
        """Delete incidents older than the cutoff. Returns the number removed."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Short label for health output."""

    # ---- helpers ---------------------------------------------------------

    @abstractmethod
    def _persist(self, incident: Incident) -> None:
        """Write a freshly created incident to the backend."""

    def _matches_hazard_query(
        self,
        incident: Incident,
        bounds: Optional[SpatialBounds],
        max_age_hours: float,
        now: datetime
    ) -> bool:
        if not incident.is_hazard:
            return False
        if bounds is not None and not bounds.contains(incident.lat, incident.lng):
            return False
        return IncidentAgeService.is_within_age(incident.timestamp, max_age_hours, now)


class InMemoryIncidentStore(IncidentStore):
    """
    Process-local incident store.

    Incidents are kept in insertion order; a grid bucket index narrows
    bounds queries before the exact coordinate check.
    """

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._incidents: Dict[str, Incident] = {}
        self._buckets: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    @property
    def backend_name(self) -> str:
        return 'memory'

    def __len__(self) -> int:
        with self._lock:
            return len(self._incidents)

    def save(self, incident: Incident) -> Incident:
        """
        Insert an incident, resolving id collisions by keeping the newer record.

        Returns:
            The incident that is stored under that id afterwards
        """
        with self._lock:
            existing = self._incidents.get(incident.id)
            if existing is not None:
                if incident.timestamp <= existing.timestamp:
                    return existing
                self._unindex(existing)
            self._incidents[incident.id] = incident
            _, key = self.index(incident)
            self._buckets.setdefault(key, []).append(incident.id)
            return incident

    def _persist(self, incident: Incident) -> None:
        self.save(incident)

    def _unindex(self, incident: Incident) -> None:
        _, key = self.index(incident)
        ids = self._buckets.get(key, [])
        if incident.id in ids:
            ids.remove(incident.id)
        if not ids:
            self._buckets.pop(key, None)

    def list_all(self, max_age_hours: Optional[float] = None) -> List[Incident]:
        now = self._clock()
        with self._lock:
            incidents = list(self._incidents.values())
        return [
            incident for incident in incidents
            if IncidentAgeService.is_within_age(incident.timestamp, max_age_hours, now)
        ]

    def _candidate_ids(self, bounds: SpatialBounds) -> set:
        candidates = set()
        for key, ids in self._buckets.items():
            if bucket_in_bounds(key, bounds):
                candidates.update(ids)
        return candidates

    def query_hazards_near(self, bounds: SpatialBounds, max_age_hours: float) -> List[Incident]:
        now = self._clock()
        with self._lock:
            candidate_ids = self._candidate_ids(bounds)
            candidates = [
                incident for incident_id, incident in self._incidents.items()
                if incident_id in candidate_ids
            ]
        return [
            incident for incident in candidates
            if self._matches_hazard_query(incident, bounds, max_age_hours, now)
        ]

    def list_recent_hazards(self, max_age_hours: float) -> List[Incident]:
        now = self._clock()
        with self._lock:
            incidents = list(self._incidents.values())
        return [
            incident for incident in incidents
            if self._matches_hazard_query(incident, None, max_age_hours, now)
        ]

    def cleanup_old_incidents(self, older_than_days: float = 7) -> int:
        cutoff = IncidentAgeService.cleanup_cutoff(older_than_days, self._clock())
        with self._lock:
            stale = [incident for incident in self._incidents.values() if incident.timestamp < cutoff]
            for incident in stale:
                self._unindex(incident)
                del self._incidents[incident.id]
        logger.info(f"Cleaned up {len(stale)} old incidents")
        return len(stale)


class PersistentIncidentStore(IncidentStore):
    """
    Firebase Realtime Database backed incident store.

    Records live at incidents/{id}. Each record carries a storage-level
    'bucket' field for grouping; it is stripped when the record is read back.

    Firebase failures are wrapped in StorageError and recovered locally: new
    incidents go to the in-memory fallback store, and every read merges the
    fallback's contents so nothing accepted while Firebase was down is lost
    for the life of the process.
    """

    DEFAULT_COLLECTION = 'incidents'

    def __init__(
        self,
        db,
        collection: str = DEFAULT_COLLECTION,
        fallback: Optional[InMemoryIncidentStore] = None,
        clock: Optional[Clock] = None
    ):
        """
        Args:
            db: firebase_admin.db module (or a compatible object exposing reference())
            collection: Database path holding incident records
            fallback: Store used when Firebase is unavailable
            clock: Optional time source, mainly for tests
        """
        super().__init__(clock)
        if db is None:
            raise ValueError("PersistentIncidentStore requires a Firebase database handle")
        self.db = db
        self.collection = collection
        self.fallback = fallback if fallback is not None else InMemoryIncidentStore(clock=self._clock)

    @property
    def backend_name(self) -> str:
        return 'firebase'

    # ---- Firebase access -------------------------------------------------

    def _ref(self, path: Optional[str] = None):
        return self.db.reference(f'{self.collection}/{path}' if path else self.collection)

    def _to_record(self, incident: Incident) -> Dict[str, Any]:
        _, key = self.index(incident)
        return {**incident.to_dict(), 'bucket': key}

    def _parse_records(self, records: Any) -> List[Incident]:
        if not records:
            return []
        if isinstance(records, dict):
            items = records.items()
        elif isinstance(records, list):
            items = ((str(i), record) for i, record in enumerate(records) if record)
        else:
            logger.warning(f"Unexpected incident payload type from Firebase: {type(records)}")
            return []

        incidents = []
        for key, record in items:
            if not isinstance(record, dict):
                continue
            try:
                incidents.append(Incident.from_dict({'id': key, **record}))
            except ValueError as e:
                logger.warning(f"Skipping malformed incident {key}: {e}")
        return incidents

    def _fetch_all_remote(self) -> List[Incident]:
        try:
            records = self._ref().get()
        except Exception as e:
            raise StorageError(f"Failed to read incidents from Firebase: {e}") from e
        return self._parse_records(records)

    def _fetch_lat_band_remote(self, bounds: SpatialBounds) -> List[Incident]:
        """Narrow server-side on latitude; longitude/type/age are verified locally."""
        try:
            records = (
                self._ref()
                .order_by_child('lat')
                .start_at(bounds.south)
                .end_at(bounds.north)
                .get()
            )
        except Exception as e:
            raise StorageError(f"Failed to query incidents by latitude band: {e}") from e
        return self._parse_records(records)

    def _write_remote(self, incident: Incident) -> None:
        try:
            self._ref(incident.id).set(self._to_record(incident))
        except Exception as e:
            raise StorageError(f"Failed to store incident {incident.id} in Firebase: {e}") from e

    def _persist(self, incident: Incident) -> None:
        try:
            self._write_remote(incident)
        except StorageError as e:
            logger.warning(f"{e} - keeping it in the in-memory fallback store")
            self.fallback.save(incident)

    def _remote_or_empty(self, loader: Callable[[], List[Incident]], action: str) -> List[Incident]:
        try:
            return loader()
        except StorageError as e:
            logger.error(f"{e} - serving {action} from the in-memory fallback store")
            return []

    @staticmethod
    def _sorted(incidents: List[Incident]) -> List[Incident]:
        return sorted(incidents, key=lambda incident: incident.timestamp)

    # ---- contract --------------------------------------------------------

    def list_all(self, max_age_hours: Optional[float] = None) -> List[Incident]:
        now = self._clock()
        remote = self._remote_or_empty(self._fetch_all_remote, 'incident list')
        merged = deduplicate_incidents(remote + self.fallback.list_all())
        return self._sorted([
            incident for incident in merged
            if IncidentAgeService.is_within_age(incident.timestamp, max_age_hours, now)
        ])

    def query_hazards_near(self, bounds: SpatialBounds, max_age_hours: float) -> List[Incident]:
        now = self._clock()
        try:
            remote = self._fetch_lat_band_remote(bounds)
        except StorageError as e:
            logger.warning(f"{e} - retrying with a full incident read")
            remote = self._remote_or_empty(self._fetch_all_remote, 'hazard query')

        candidates = deduplicate_incidents(
            remote + self.fallback.query_hazards_near(bounds, max_age_hours)
        )
        matches = [
            incident for incident in candidates
            if self._matches_hazard_query(incident, bounds, max_age_hours, now)
        ]
        return self._sorted(matches)

    def list_recent_hazards(self, max_age_hours: float) -> List[Incident]:
        now = self._clock()
        remote = self._remote_or_empty(self._fetch_all_remote, 'recent hazard list')
        candidates = deduplicate_incidents(remote + self.fallback.list_recent_hazards(max_age_hours))
        return self._sorted([
            incident for incident in candidates
            if self._matches_hazard_query(incident, None, max_age_hours, now)
        ])

    def cleanup_old_incidents(self, older_than_days: float = 7) -> int:
        cutoff = IncidentAgeService.cleanup_cutoff(older_than_days, self._clock())
        deleted = 0
        try:
            for incident in self._fetch_all_remote():
                if incident.timestamp < cutoff:
                    self._ref(incident.id).delete()
                    deleted += 1
        except StorageError as e:
            logger.error(f"{e} - skipping Firebase cleanup")
        except Exception as e:
            logger.error(f"Failed to delete old incidents from Firebase: {e}")

        deleted += self.fallback.cleanup_old_incidents(older_than_days)
        logger.info(f"Cleaned up {deleted} old incidents (Firebase + fallback)")
        return deleted


def create_incident_store(db=None, collection: str = PersistentIncidentStore.DEFAULT_COLLECTION) -> IncidentStore:
    """
    Choose the incident backend once at startup.

    Args:
        db: Initialized firebase_admin.db handle, or None when Firebase is not configured

    Returns:
        PersistentIncidentStore when a database handle is available, otherwise
        InMemoryIncidentStore
    """
    if db is not None:
        logger.info(f"Using Firebase incident store at '{collection}'")
        return PersistentIncidentStore(db, collection=collection)

    logger.info("Firebase not configured - using in-memory incident store")
    return InMemoryIncidentStore()
