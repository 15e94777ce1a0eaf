"""
Test suite for the community hazard map backend.

This package contains:
- test_incident_store.py: In-memory and Firebase-backed incident stores
- test_exclusion_resolver.py: Corridor hazard lookup and exclusion formatting
- test_valhalla_routing_service.py: Valhalla client, fallback and throttling
- test_route_orchestrator.py: Route request orchestration
- test_incidents_api.py / test_routes_api.py: End-to-end API tests
- test_config.py: Environment-driven configuration

Run tests:
    pip install -e ".[test]"
    python -m pytest
"""
