from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import logging
import os
from datetime import datetime, timezone
from config import get_config
from firebase_setup import init_firebase_db
from services.incident_age import IncidentAgeService
from services.incident_store import create_incident_store
from services.exclusion_resolver import ExclusionResolver
from services.valhalla_routing_service import ValhallaRoutingService
from services.route_orchestrator import RouteOrchestrator
from utils.errors import ValidationError, RoutingProviderError
from utils.validators import CoordinateValidator, RouteValidator

app_config = get_config()

logging.basicConfig(level=getattr(logging, app_config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.from_object(app_config)

# Incident reports are small JSON documents
app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024  # 1 MB

CORS(app, origins=app_config.CORS_ORIGINS, supports_credentials=True)


@app.after_request
def set_security_headers(response):
    """
    Add security headers to all responses.

    - HSTS: Forces HTTPS for 1 year (only in production)
    - X-Frame-Options / frame-ancestors: Prevents clickjacking
    - X-Content-Type-Options: Prevents MIME sniffing
    - CSP: JSON API only, no active content
    """
    if not app_config.DEBUG and not app_config.TESTING:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    return response


# Rate Limiting Configuration
# Set REDIS_URL to share limits across multiple workers: redis://your-redis-host:6379
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=["1000 per day", "200 per hour"],
    storage_uri=app_config.RATE_LIMIT_STORAGE_URI,
    enabled=app_config.RATE_LIMIT_ENABLED
)

# Initialize services
# Firebase is optional: without credentials incidents are kept in memory
incident_store = None
exclusion_resolver = None
routing_service = None
route_orchestrator = None


def init_services(db=None, store=None, routing=None):
    """
    (Re)build the service graph.

    Args:
        db: firebase_admin.db handle, or None for the in-memory store
        store: Pre-built IncidentStore (overrides db)
        routing: Pre-built ValhallaRoutingService
    """
    global incident_store, exclusion_resolver, routing_service, route_orchestrator

    incident_store = store if store is not None else create_incident_store(
        db, collection=app_config.FIREBASE_INCIDENTS_PATH
    )
    exclusion_resolver = ExclusionResolver(incident_store, max_age_hours=app_config.INCIDENT_MAX_AGE_HOURS)
    routing_service = routing if routing is not None else ValhallaRoutingService(
        base_url=app_config.VALHALLA_BASE_URL,
        timeout_seconds=app_config.VALHALLA_TIMEOUT_SECONDS,
        min_interval_seconds=app_config.VALHALLA_MIN_INTERVAL_SECONDS
    )
    route_orchestrator = RouteOrchestrator(exclusion_resolver, routing_service)


init_services(db=init_firebase_db())


def _route_error_response(error_message: str, e: Exception):
    return jsonify({
        'error': error_message,
        'details': getattr(e, 'message', None) or str(e) or 'Unknown error'
    }), 500


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _optional_number(name: str):
    """Query parameter as a finite float, or None when absent."""
    value = request.args.get(name)
    if value in (None, ''):
        return None
    return CoordinateValidator.parse_number(value, name)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@app.route('/health', methods=['GET'])
@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'service': 'community-map-api',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': '1.0.0',
        'storage': incident_store.backend_name
    })


# ================================================================================
# INCIDENT ENDPOINTS
# ================================================================================

@app.route('/api/incidents', methods=['POST'])
@limiter.limit("30 per hour")  # Allow burst reporting during emergencies
@limiter.limit("200 per day")
def create_incident():
    """
    Create a new incident report.

    Request Body:
        type (str): debris_road | downed_powerline | food_available |
                    gas_available | power_available | shelter_available
        description (str): Free-text description
        location (dict, optional): {"lat": float, "lng": float}
        reportedBy (str, optional): Attribution, defaults to 'Anonymous'

    Returns:
        201: {id, lat, lng, type, description, timestamp, reportedBy}
        400: Missing or invalid fields
    """
    try:
        data = _json_body()
        incident = incident_store.create(
            data.get('type'),
            data.get('description'),
            location=data.get('location'),
            reported_by=data.get('reportedBy')
        )
        return jsonify(incident.to_dict()), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception as e:
        logger.error(f"Error creating incident: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@app.route('/api/incidents', methods=['GET'])
def get_incidents():
    """
    Get all incidents in insertion order.

    Query Parameters:
        - max_age_hours (optional): Only return incidents at most this old
        - lat, lng, radius_km (optional, together): Only return incidents
          within radius_km of the point
    """
    try:
        max_age_hours = _optional_number('max_age_hours')

        error = IncidentAgeService.validate_max_age_filter(max_age_hours)
        if error:
            return jsonify({'error': error}), 400

        radius_km = _optional_number('radius_km')
        if radius_km is None:
            incidents = incident_store.list_all(max_age_hours=max_age_hours)
        else:
            if radius_km < 0:
                raise ValidationError('radius_km must be non-negative', field='radius_km')
            center = CoordinateValidator.parse_point(
                {'lat': request.args.get('lat'), 'lng': request.args.get('lng')},
                'center',
                lon_key='lng'
            )
            incidents = incident_store.list_near(
                center['lat'], center['lng'], radius_km, max_age_hours=max_age_hours
            )

        return jsonify([incident.to_dict() for incident in incidents])
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception as e:
        logger.error(f"Error in get_incidents: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@app.route('/api/incidents/exclusions', methods=['GET'])
def get_exclusions():
    """
    Get Valhalla-formatted exclusion coordinates for recent hazards.

    Query Parameters:
        startLat, startLng, endLat, endLng (optional): Route corridor endpoints.
            If any is omitted, every recent hazard is returned.
        buffer (optional): Corridor buffer in km (default 2)

    Returns:
        200: {exclude_locations: [{lat, lon}, ...]}
        400: Non-numeric parameters
    """
    try:
        params = [request.args.get(name) for name in ('startLat', 'startLng', 'endLat', 'endLng')]

        if any(value in (None, '') for value in params):
            exclude_locations = exclusion_resolver.resolve_all_recent_exclusions()
        else:
            start_lat, start_lng, end_lat, end_lng = params
            start = CoordinateValidator.parse_point({'lat': start_lat, 'lon': start_lng}, 'start')
            end = CoordinateValidator.parse_point({'lat': end_lat, 'lon': end_lng}, 'end')
            buffer_km = request.args.get('buffer')
            buffer_km = RouteValidator.validate_buffer_km(
                buffer_km if buffer_km not in (None, '') else app_config.DEFAULT_BUFFER_KM
            )
            exclude_locations = exclusion_resolver.resolve_exclusions(start, end, buffer_km)

        return jsonify({'exclude_locations': exclude_locations})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception as e:
        logger.error(f"Error getting exclusions: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


@app.route('/api/incidents/cleanup', methods=['POST'])
@limiter.limit("5 per hour")
def cleanup_incidents():
    """
    Delete incidents older than a cutoff (maintenance hook).

    Request Body (optional):
        older_than_days (float): Defaults to INCIDENT_CLEANUP_DAYS (7)
    """
    try:
        data = request.get_json(silent=True) or {}
        older_than_days = data.get('older_than_days', app_config.INCIDENT_CLEANUP_DAYS)
        older_than_days = CoordinateValidator.parse_number(older_than_days, 'older_than_days')
        if older_than_days < 0:
            raise ValidationError('older_than_days must be non-negative', field='older_than_days')

        deleted = incident_store.cleanup_old_incidents(older_than_days)
        return jsonify({'deleted': deleted, 'older_than_days': older_than_days})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception as e:
        logger.error(f"Error cleaning up incidents: {e}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500


# ================================================================================
# ROUTE ENDPOINTS
# ================================================================================

@app.route('/api/routes', methods=['POST'])
@limiter.limit("10 per minute")  # Each request makes two throttled Valhalla calls
@limiter.limit("120 per hour")
def calculate_route():
    """
    Calculate an incident-avoiding route and a baseline route.

    Request Body:
        start (dict): {"lat": float, "lon": float}
        end (dict): {"lat": float, "lon": float}
        costing (str, optional): auto | bicycle | pedestrian (default: auto)
        avoid_incidents (bool, optional): default True
        buffer_km (float, optional): default 2

    Returns:
        200: {optimal_route, baseline_route, avoided_incidents, exclusions_used, calculation_time_ms}
        400: Missing or invalid coordinates
        500: {error, details} when the routing engine fails
    """
    try:
        data = _json_body()
        result = route_orchestrator.calculate_route(
            data.get('start'),
            data.get('end'),
            costing=data.get('costing', 'auto'),
            avoid_incidents=_parse_bool(data.get('avoid_incidents', True)),
            buffer_km=data.get('buffer_km', app_config.DEFAULT_BUFFER_KM)
        )
        return jsonify(result)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except RoutingProviderError as e:
        logger.error(f"Error calculating route: {e}")
        return _route_error_response('Failed to calculate route', e)
    except Exception as e:
        logger.error(f"Error calculating route: {e}", exc_info=True)
        return _route_error_response('Failed to calculate route', e)


@app.route('/api/routes/simple', methods=['POST'])
@limiter.limit("20 per minute")
def calculate_simple_route():
    """
    Route without any incident exclusion logic.

    Request Body:
        start, end (dict): {"lat": float, "lon": float}
        costing (str, optional): auto | bicycle | pedestrian

    Returns:
        200: {summary, directions, geometry}
    """
    try:
        data = _json_body()
        result = route_orchestrator.calculate_simple_route(
            data.get('start'),
            data.get('end'),
            costing=data.get('costing', 'auto')
        )
        return jsonify(result)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except RoutingProviderError as e:
        logger.error(f"Error calculating simple route: {e}")
        return _route_error_response('Failed to calculate route', e)
    except Exception as e:
        logger.error(f"Error calculating simple route: {e}", exc_info=True)
        return _route_error_response('Failed to calculate route', e)


@app.route('/api/routes/test', methods=['GET'])
@limiter.limit("10 per hour")
def test_route():
    """Smoke-test Valhalla with a fixed Miami -> West Palm Beach route."""
    try:
        return jsonify(routing_service.test_connection())
    except Exception as e:
        logger.error(f"Route test failed: {e}")
        return _route_error_response('Route test failed', e)


# ===== ERROR HANDLERS =====

@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Route not found'}), 404


@app.errorhandler(413)
def request_entity_too_large(error):
    """
    Handle requests that exceed MAX_CONTENT_LENGTH.

    Returns:
        413: Payload too large error
    """
    return jsonify({
        'error': 'Request payload too large',
        'max_size': '1 MB'
    }), 413


@app.errorhandler(400)
def bad_request(error):
    """
    Handle malformed requests.

    Returns:
        400: Bad request error
    """
    return jsonify({
        'error': 'Bad request',
        'message': str(error)
    }), 400


if __name__ == '__main__':
    # Use environment variable to control debug mode (defaults to False for production)
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    logger.info(f"🌀 Community Map Backend running on port {app_config.PORT}")
    app.run(debug=debug_mode, host='0.0.0.0', port=app_config.PORT)
