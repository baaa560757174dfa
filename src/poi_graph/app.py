"""
Flask application exposing the POI search operations over HTTP.
"""

import argparse
import logging
from logging.handlers import RotatingFileHandler

from typing import Optional

from flask import Flask, request, jsonify

from poi_graph import PROJECT_ROOT, __version__
from poi_graph.config_loader import ConfigLoader
from poi_graph.errors import GraphStoreUnavailable, InvalidSearchRequest, TimeSeriesUnavailable
from poi_graph.search import NearbySearchService
from poi_graph.timeseries import MEASUREMENTS, InfluxTimeSeriesClient

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _float_arg(name, required=False):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        if required:
            raise InvalidSearchRequest(f"{name} is required")
        return None
    try:
        return float(raw)
    except ValueError:
        raise InvalidSearchRequest(f"{name} must be a number")


def _int_arg(name):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidSearchRequest(f"{name} must be an integer")


def _bool_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise InvalidSearchRequest(f"{name} must be true or false")


def _csv_arg(name):
    raw = request.args.get(name)
    if not raw:
        return []
    return [part.strip() for part in raw.split(',') if part.strip()]


def _required_arg(name):
    value = request.args.get(name, '').strip()
    if not value:
        raise InvalidSearchRequest(f"{name} is required")
    return value


def _timeseries_call(fn, *args, **kwargs):
    # Unknown measurements, fields and range bounds are caller errors
    try:
        return fn(*args, **kwargs)
    except ValueError as e:
        raise InvalidSearchRequest(str(e)) from e


def create_app(service: NearbySearchService,
               timeseries: Optional[InfluxTimeSeriesClient] = None) -> Flask:
    """
    Create and configure the Flask application.

    The /api/sensors routes are only registered when a time-series client is given.
    """
    app = Flask(__name__)

    @app.errorhandler(InvalidSearchRequest)
    def handle_invalid_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(GraphStoreUnavailable)
    @app.errorhandler(TimeSeriesUnavailable)
    def handle_unavailable(e):
        logger.error(f"Upstream store unavailable: {e}")
        return jsonify({"error": str(e)}), 502

    # --- Routes ---

    @app.route('/api/nearby', methods=['GET'])
    def nearby():
        """POIs within a radius, nearest first"""
        result = service.search_nearby(
            lat=_float_arg('lat', required=True),
            lon=_float_arg('lon', required=True),
            radius_km=_float_arg('radiusKm', required=True),
            types=_csv_arg('types') or None,
            language=request.args.get('language', 'vi'),
            include_topology=_bool_arg('includeTopology', True),
            include_iot=_bool_arg('includeIoT', False),
            min_aqi=_float_arg('minAqi'),
            max_aqi=_float_arg('maxAqi'),
            limit=_int_arg('limit'),
        )
        return jsonify(result.to_dict())

    @app.route('/api/nearby/topology', methods=['GET'])
    def nearby_with_topology():
        """Target-type POIs related to nearby POIs of the related types"""
        result = service.search_nearby_with_topology(
            lat=_float_arg('lat', required=True),
            lon=_float_arg('lon', required=True),
            radius_km=_float_arg('radiusKm', required=True),
            target_type=request.args.get('targetType', ''),
            related_types=_csv_arg('relatedTypes'),
            relationship=request.args.get('relationship', 'isNextTo'),
            limit=_int_arg('limit'),
            language=request.args.get('language', 'vi'),
        )
        return jsonify(result.to_dict())

    @app.route('/api/pois', methods=['GET'])
    def pois_by_type():
        """POIs of one type"""
        type_key = request.args.get('type')
        if not type_key:
            raise InvalidSearchRequest("type is required")
        return jsonify(service.browse_by_type(
            type_key,
            limit=_int_arg('limit'),
            language=request.args.get('language', 'vi'),
        ))

    @app.route('/api/graphs', methods=['GET'])
    def graphs():
        """Named graphs with triple counts"""
        graph_list = service.list_graphs()
        return jsonify({"count": len(graph_list), "graphs": graph_list})

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok", "version": __version__})

    if timeseries is not None:
        _register_sensor_routes(app, timeseries)

    return app


def _register_sensor_routes(app: Flask, timeseries: InfluxTimeSeriesClient) -> None:
    @app.route('/api/sensors/measurements', methods=['GET'])
    def sensor_measurements():
        return jsonify({"measurements": {name: list(fields) for name, fields in MEASUREMENTS.items()}})

    @app.route('/api/sensors/latest', methods=['GET'])
    def sensor_latest():
        """Latest reading of one station"""
        result = _timeseries_call(
            timeseries.get_latest_by_station,
            _required_arg('stationId'),
            _required_arg('measurement'),
            _csv_arg('fields') or None,
        )
        return jsonify({"data": result})

    @app.route('/api/sensors/history', methods=['GET'])
    def sensor_history():
        """Readings of one station over a time range"""
        results = _timeseries_call(
            timeseries.get_history_by_station,
            _required_arg('stationId'),
            _required_arg('measurement'),
            start=request.args.get('start', '-1h'),
            stop=request.args.get('stop', 'now()'),
            fields=_csv_arg('fields') or None,
            aggregate_window=request.args.get('aggregateWindow') or None,
        )
        return jsonify({"count": len(results), "data": results})

    @app.route('/api/sensors/stations', methods=['GET'])
    def sensor_stations():
        """Latest reading of every station for one measurement"""
        results = _timeseries_call(
            timeseries.get_latest_all_stations,
            _required_arg('measurement'),
            _csv_arg('fields') or None,
        )
        return jsonify({"count": len(results), "data": results})

    @app.route('/api/sensors/device', methods=['GET'])
    def sensor_device():
        """Latest readings of the station behind a device URI"""
        device_uri = _required_arg('uri')
        results = _timeseries_call(
            timeseries.get_data_by_device_uri,
            device_uri,
            measurement=request.args.get('measurement') or None,
            fields=_csv_arg('fields') or None,
        )
        return jsonify({"deviceUri": device_uri, "count": len(results), "data": results})


def main():
    """Entry point: parse CLI args, configure logging, create app, and run."""
    parser = argparse.ArgumentParser(description='Geospatial POI search service')
    parser.add_argument('--env', type=str, help='Path to environment file')
    parser.add_argument('--port', type=int, default=None, help='Port to listen on (default: PORT or 5001)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging, including query text.')
    args = parser.parse_args()

    log_dir = PROJECT_ROOT / 'logs'
    log_dir.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            RotatingFileHandler(str(log_dir / 'app.log'), maxBytes=10485760, backupCount=5),
            logging.StreamHandler()
        ]
    )
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Debug logging enabled")

    config = ConfigLoader.load_config(args.env)
    graphs_config = ConfigLoader.load_graphs_config()
    service = NearbySearchService.from_config(config, graphs_config)
    app = create_app(service, timeseries=service.sensors.client if service.sensors else None)

    port = args.port or config.get("port", 5001)
    logger.info(f"SPARQL endpoint: {config['fuseki_query_endpoint']}")
    print(f"Running on http://localhost:{port}")
    print(f"Press CTRL+C to stop the server")
    app.run(debug=False, host='127.0.0.1', port=port)


if __name__ == '__main__':
    main()
