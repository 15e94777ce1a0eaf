"""
Tests for the incident stores

Covers report creation, insertion-ordered listing, the exact spatial/age
hazard query (checked against a brute-force scan over random data), id
deduplication, cleanup, and the Firebase-backed store's narrowing queries
and in-memory fallback.
"""
import random
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from services.incident_store import (
    Incident,
    InMemoryIncidentStore,
    PersistentIncidentStore,
    create_incident_store,
    deduplicate_incidents,
)
from utils.errors import ValidationError
from utils.geo import SpatialBounds, bucket_key, route_bounds


NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


def make_incident(incident_id, lat=26.1224, lng=-80.1373, incident_type='debris_road', hours_ago=1.0):
    return Incident(
        id=incident_id,
        lat=lat,
        lng=lng,
        type=incident_type,
        description=f'{incident_type} report',
        timestamp=NOW - timedelta(hours=hours_ago)
    )


@pytest.fixture
def store():
    return InMemoryIncidentStore(clock=fixed_clock)


@pytest.fixture
def corridor():
    """Miami -> West Palm Beach corridor with the default 2 km buffer"""
    return route_bounds(25.7617, -80.1918, 26.7153, -80.0534, buffer_km=2)


class TestIncidentModel:

    def test_to_dict_shape(self):
        incident = make_incident('abc')
        data = incident.to_dict()

        assert set(data.keys()) == {'id', 'lat', 'lng', 'type', 'description', 'timestamp', 'reportedBy'}
        assert data['reportedBy'] == 'Anonymous'
        assert data['timestamp'] == (NOW - timedelta(hours=1)).isoformat()

    def test_to_exclusion_renames_lng(self):
        assert make_incident('abc').to_exclusion() == {'lat': 26.1224, 'lon': -80.1373}

    def test_from_dict_round_trip(self):
        incident = make_incident('abc')
        assert Incident.from_dict(incident.to_dict()) == incident

    def test_from_dict_malformed(self):
        with pytest.raises(ValueError):
            Incident.from_dict({'id': 'abc', 'lat': 1.0})

    def test_is_hazard(self):
        assert make_incident('a', incident_type='downed_powerline').is_hazard
        assert not make_incident('b', incident_type='gas_available').is_hazard


class TestCreateIncident:

    def test_create_assigns_id_and_timestamp(self, store):
        incident = store.create(
            'debris_road', 'Tree down', location={'lat': 26.1224, 'lng': -80.1373}
        )

        assert incident.id
        assert incident.timestamp == NOW
        assert incident.reported_by == 'Anonymous'
        assert store.list_all() == [incident]

    def test_ids_are_unique(self, store):
        first = store.create('debris_road', 'Tree down', location={'lat': 1, 'lng': 1})
        second = store.create('debris_road', 'Tree down', location={'lat': 1, 'lng': 1})
        assert first.id != second.id

    def test_missing_location_defaults_to_origin(self, store):
        incident = store.create('shelter_available', 'School gym open')
        assert (incident.lat, incident.lng) == (0.0, 0.0)

    def test_reporter_is_kept(self, store):
        incident = store.create('food_available', 'Hot meals', reported_by='Church volunteers')
        assert incident.reported_by == 'Church volunteers'

    def test_missing_description_rejected(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.create('debris_road', '')
        assert 'description' in exc_info.value.message
        assert len(store) == 0

    def test_invalid_type_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create('flood', 'Water on road')
        assert len(store) == 0

    def test_list_preserves_insertion_order(self, store):
        created = [
            store.create('debris_road', f'Report {i}', location={'lat': 26 + i / 100, 'lng': -80})
            for i in range(5)
        ]
        assert store.list_all() == created


class TestHazardQueries:

    def test_query_returns_only_recent_hazards_in_bounds(self, store, corridor):
        store.save(make_incident('in', 26.1224, -80.1373, 'debris_road', hours_ago=2))
        store.save(make_incident('resource', 26.1224, -80.1373, 'food_available', hours_ago=2))
        store.save(make_incident('stale', 26.1224, -80.1373, 'downed_powerline', hours_ago=30))
        store.save(make_incident('far', 37.7749, -122.4194, 'debris_road', hours_ago=2))

        results = store.query_hazards_near(corridor, 24)
        assert [incident.id for incident in results] == ['in']

    def test_boundary_is_inclusive(self, store):
        bounds = SpatialBounds(north=27.0, south=26.0, east=-80.0, west=-81.0)
        store.save(make_incident('edge', 27.0, -80.0, hours_ago=24))

        assert [incident.id for incident in store.query_hazards_near(bounds, 24)] == ['edge']

    def test_seeded_random_matches_brute_force(self, store):
        rng = random.Random(1234)
        types = ['debris_road', 'downed_powerline', 'food_available', 'gas_available']
        incidents = [
            make_incident(
                f'incident-{i}',
                lat=rng.uniform(25.0, 27.0),
                lng=rng.uniform(-81.0, -79.0),
                incident_type=rng.choice(types),
                hours_ago=rng.uniform(0, 48)
            )
            for i in range(300)
        ]
        for incident in incidents:
            store.save(incident)

        for _ in range(20):
            lat_a, lat_b = sorted(rng.uniform(25.0, 27.0) for _ in range(2))
            lng_a, lng_b = sorted(rng.uniform(-81.0, -79.0) for _ in range(2))
            bounds = SpatialBounds(north=lat_b, south=lat_a, east=lng_b, west=lng_a)
            max_age = rng.choice([6, 24, 36])

            expected = {
                incident.id for incident in incidents
                if incident.type in ('debris_road', 'downed_powerline')
                and lat_a <= incident.lat <= lat_b
                and lng_a <= incident.lng <= lng_b
                and (NOW - incident.timestamp) <= timedelta(hours=max_age)
            }
            actual = {incident.id for incident in store.query_hazards_near(bounds, max_age)}

            assert actual == expected

    def test_list_recent_hazards_ignores_location(self, store):
        store.save(make_incident('miami', 25.7617, -80.1918))
        store.save(make_incident('sf', 37.7749, -122.4194, 'downed_powerline'))
        store.save(make_incident('shelter', 25.7617, -80.1918, 'shelter_available'))
        store.save(make_incident('old', 25.7617, -80.1918, hours_ago=25))

        assert [incident.id for incident in store.list_recent_hazards(24)] == ['miami', 'sf']

    def test_max_age_filter_on_list(self, store):
        store.save(make_incident('fresh', hours_ago=1))
        store.save(make_incident('old', hours_ago=48))

        assert [incident.id for incident in store.list_all(max_age_hours=24)] == ['fresh']
        assert len(store.list_all()) == 2

    def test_list_near_filters_by_radius(self, store):
        store.save(make_incident('here', 26.1224, -80.1373))
        store.save(make_incident('close', 26.1300, -80.1400, 'shelter_available'))
        store.save(make_incident('miami', 25.7617, -80.1918))
        store.save(make_incident('stale', 26.1224, -80.1373, hours_ago=48))

        assert [incident.id for incident in store.list_near(26.1224, -80.1373, 5)] == ['here', 'close', 'stale']
        assert [incident.id for incident in store.list_near(26.1224, -80.1373, 5, max_age_hours=24)] == ['here', 'close']
        assert len(store.list_near(26.1224, -80.1373, 50)) == 4


class TestDeduplication:

    def test_newer_record_wins(self, store, corridor):
        older = make_incident('dup', hours_ago=5)
        newer = make_incident('dup', lat=26.5, hours_ago=1)

        store.save(older)
        store.save(newer)
        store.save(older)

        assert store.list_all() == [newer]
        assert store.query_hazards_near(corridor, 24) == [newer]

    def test_moved_record_is_reindexed(self, store):
        store.save(make_incident('dup', lat=26.1224, lng=-80.1373, hours_ago=5))
        store.save(make_incident('dup', lat=37.7749, lng=-122.4194, hours_ago=1))

        florida = route_bounds(26.1224, -80.1373, 26.1224, -80.1373, buffer_km=1)
        assert store.query_hazards_near(florida, 24) == []

    def test_deduplicate_incidents(self):
        a_old = make_incident('a', hours_ago=3)
        a_new = make_incident('a', hours_ago=1)
        b = make_incident('b', hours_ago=2)

        assert deduplicate_incidents([a_old, b, a_new]) == [a_new, b]


class TestCleanup:

    def test_removes_old_incidents(self, store, corridor):
        store.save(make_incident('recent', hours_ago=1))
        store.save(make_incident('ancient', hours_ago=24 * 8))

        assert store.cleanup_old_incidents(7) == 1
        assert [incident.id for incident in store.list_all()] == ['recent']

    def test_nothing_to_remove(self, store):
        store.save(make_incident('recent', hours_ago=1))
        assert store.cleanup_old_incidents(7) == 0


@pytest.fixture
def mock_db():
    """Mock firebase_admin.db with a shared reference object"""
    db = MagicMock()
    db.reference.return_value.get.return_value = None
    return db


@pytest.fixture
def persistent_store(mock_db):
    return PersistentIncidentStore(mock_db, clock=fixed_clock)


def remote_records(*incidents):
    return {
        incident.id: {**incident.to_dict(), 'bucket': bucket_key(incident.lat, incident.lng)}
        for incident in incidents
    }


class TestPersistentIncidentStore:

    def test_requires_db(self):
        with pytest.raises(ValueError):
            PersistentIncidentStore(None)

    def test_create_writes_record_with_bucket(self, persistent_store, mock_db):
        incident = persistent_store.create(
            'debris_road', 'Tree down', location={'lat': 26.1224, 'lng': -80.1373}
        )

        mock_db.reference.assert_any_call(f'incidents/{incident.id}')
        record = mock_db.reference.return_value.set.call_args[0][0]
        assert record['bucket'] == '116122_99862'
        assert record['type'] == 'debris_road'
        assert record['reportedBy'] == 'Anonymous'
        assert len(persistent_store.fallback) == 0

    def test_write_failure_goes_to_fallback(self, persistent_store, mock_db):
        mock_db.reference.return_value.set.side_effect = Exception('Firebase unavailable')

        incident = persistent_store.create(
            'debris_road', 'Tree down', location={'lat': 26.1224, 'lng': -80.1373}
        )

        assert persistent_store.fallback.list_all() == [incident]
        assert persistent_store.list_all() == [incident]

    def test_list_all_sorted_and_strips_bucket(self, persistent_store, mock_db):
        newer = make_incident('b', hours_ago=1)
        older = make_incident('a', hours_ago=3)
        mock_db.reference.return_value.get.return_value = remote_records(newer, older)

        assert persistent_store.list_all() == [older, newer]

    def test_malformed_records_are_skipped(self, persistent_store, mock_db):
        good = make_incident('good')
        records = remote_records(good)
        records['bad'] = {'lat': 'oops'}
        mock_db.reference.return_value.get.return_value = records

        assert persistent_store.list_all() == [good]

    def test_query_narrows_by_latitude_then_verifies(self, persistent_store, mock_db, corridor):
        inside = make_incident('inside', 26.1224, -80.1373)
        wrong_lng = make_incident('wrong_lng', 26.1224, -81.5)
        resource = make_incident('resource', 26.1224, -80.1373, 'gas_available')
        stale = make_incident('stale', 26.1224, -80.1373, hours_ago=30)

        band = mock_db.reference.return_value.order_by_child.return_value.start_at.return_value.end_at.return_value
        band.get.return_value = remote_records(inside, wrong_lng, resource, stale)

        results = persistent_store.query_hazards_near(corridor, 24)

        assert results == [inside]
        mock_db.reference.return_value.order_by_child.assert_called_with('lat')
        mock_db.reference.return_value.order_by_child.return_value.start_at.assert_called_with(corridor.south)
        mock_db.reference.return_value.order_by_child.return_value.start_at.return_value.end_at.assert_called_with(
            corridor.north
        )

    def test_query_falls_back_to_full_read(self, persistent_store, mock_db, corridor):
        inside = make_incident('inside')
        mock_db.reference.return_value.order_by_child.side_effect = Exception('index not defined')
        mock_db.reference.return_value.get.return_value = remote_records(inside)

        assert persistent_store.query_hazards_near(corridor, 24) == [inside]

    def test_query_serves_fallback_when_firebase_down(self, persistent_store, mock_db, corridor):
        local = make_incident('local')
        persistent_store.fallback.save(local)
        mock_db.reference.return_value.order_by_child.side_effect = Exception('offline')
        mock_db.reference.return_value.get.side_effect = Exception('offline')

        assert persistent_store.query_hazards_near(corridor, 24) == [local]

    def test_merge_prefers_newer_duplicate(self, persistent_store, mock_db):
        remote_copy = make_incident('dup', hours_ago=3)
        local_copy = make_incident('dup', hours_ago=1)
        persistent_store.fallback.save(local_copy)
        mock_db.reference.return_value.get.return_value = remote_records(remote_copy)

        assert persistent_store.list_recent_hazards(24) == [local_copy]

    def test_list_payload_supported(self, persistent_store, mock_db):
        incident = make_incident('0')
        record = {key: value for key, value in incident.to_dict().items() if key != 'id'}
        mock_db.reference.return_value.get.return_value = [record, None]

        assert persistent_store.list_all() == [incident]

    def test_cleanup_deletes_remote_and_fallback(self, persistent_store, mock_db):
        recent = make_incident('recent', hours_ago=1)
        ancient = make_incident('ancient', hours_ago=24 * 10)
        mock_db.reference.return_value.get.return_value = remote_records(recent, ancient)
        persistent_store.fallback.save(make_incident('ancient-local', hours_ago=24 * 10))

        assert persistent_store.cleanup_old_incidents(7) == 2
        mock_db.reference.assert_any_call('incidents/ancient')
        mock_db.reference.return_value.delete.assert_called_once()

    def test_empty_injected_fallback_is_kept(self, mock_db):
        """An empty fallback store is still the one used"""
        fallback = InMemoryIncidentStore(clock=fixed_clock)
        persistent = PersistentIncidentStore(mock_db, fallback=fallback, clock=fixed_clock)
        assert persistent.fallback is fallback

        mock_db.reference.return_value.set.side_effect = Exception('Firebase unavailable')
        incident = persistent.create('debris_road', 'Tree down', location={'lat': 26.1224, 'lng': -80.1373})

        assert fallback.list_all() == [incident]

    def test_backend_names(self, persistent_store, store):
        assert persistent_store.backend_name == 'firebase'
        assert store.backend_name == 'memory'


class TestStoreFactory:

    def test_memory_without_db(self):
        assert isinstance(create_incident_store(None), InMemoryIncidentStore)

    def test_firebase_with_db(self, mock_db):
        created = create_incident_store(mock_db, collection='hazards')
        assert isinstance(created, PersistentIncidentStore)
        assert created.collection == 'hazards'
