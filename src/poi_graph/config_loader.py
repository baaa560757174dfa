"""
Configuration loader for the POI search service.
This module handles loading configuration from environment files and the
optional per-type graph overrides in config/graphs.yaml.
"""

import os
import logging
from typing import Dict, Any

import yaml
from dotenv import load_dotenv

from poi_graph import PROJECT_ROOT

logger = logging.getLogger(__name__)

CONFIG_DIR = PROJECT_ROOT / "config"


def _int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name}={value!r} is not an integer, using {default}")
        return default


def _float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"{name}={value!r} is not a number, using {default}")
        return default


class ConfigLoader:
    """Configuration loader for the POI search service"""

    @staticmethod
    def load_config(env_file: str = None) -> Dict[str, Any]:
        """Load configuration from environment file"""
        config_dir = str(CONFIG_DIR)
        default_env = os.path.join(config_dir, ".env")

        if env_file:
            # Relative paths are looked up in config/ first
            if not os.path.isabs(env_file):
                config_path = os.path.join(config_dir, env_file)
                if os.path.exists(config_path):
                    env_file = config_path

            if os.path.exists(env_file):
                logger.info(f"Loading configuration from {env_file}")
                load_dotenv(env_file)
            else:
                logger.warning(f"Specified env file not found: {env_file}, loading default")
                if os.path.exists(default_env):
                    load_dotenv(default_env)
        elif os.path.exists(default_env):
            logger.info(f"Loading configuration from {default_env}")
            load_dotenv(default_env)
        else:
            logger.warning("No .env file found in config/ directory")

        # Credentials live in config/.env.secrets (if it exists)
        secrets_file = os.path.join(config_dir, ".env.secrets")
        if os.path.exists(secrets_file):
            logger.info(f"Loading secrets from {secrets_file}")
            load_dotenv(secrets_file, override=True)

        query_endpoint = os.environ.get("FUSEKI_QUERY_ENDPOINT")
        if not query_endpoint:
            base_url = os.environ.get("FUSEKI_BASE_URL", "http://localhost:3030").rstrip("/")
            dataset = os.environ.get("FUSEKI_DATASET", "hanoi")
            query_endpoint = f"{base_url}/{dataset}/sparql"

        config = {
            "fuseki_query_endpoint": query_endpoint,
            "fuseki_user": os.environ.get("FUSEKI_USER"),
            "fuseki_pass": os.environ.get("FUSEKI_PASS"),
            "sparql_timeout": _int("SPARQL_TIMEOUT", 30),
            "graph_base": os.environ.get("FUSEKI_GRAPH_BASE", "http://localhost:3030/graph"),
            "topology_graph": os.environ.get("FUSEKI_GRAPH_TOPOLOGY", "http://localhost:3030/graph/topology"),
            "iot_coverage_graph": os.environ.get("FUSEKI_GRAPH_IOT_COVERAGE",
                                                 "http://localhost:3030/graph/iot-coverage"),
            "influxdb_url": os.environ.get("INFLUXDB_URL", "http://localhost:8086"),
            "influxdb_token": os.environ.get("INFLUXDB_TOKEN", ""),
            "influxdb_org": os.environ.get("INFLUXDB_ORG", "fithou"),
            "influxdb_bucket": os.environ.get("INFLUXDB_BUCKET", "iot_data"),
            "sensor_max_concurrent": _int("SENSOR_MAX_CONCURRENT", 8),
            "request_deadline_seconds": _float("REQUEST_DEADLINE_SECONDS", 20.0),
            "schema_cache_ttl": _float("SCHEMA_CACHE_TTL", 600.0),
            "schema_cache_size": _int("SCHEMA_CACHE_SIZE", 256),
            "max_result_limit": _int("MAX_RESULT_LIMIT", 200),
            "port": _int("PORT", 5001),
        }

        if config["fuseki_user"] and not config["fuseki_pass"]:
            logger.warning("FUSEKI_USER is set but FUSEKI_PASS is not; requests will be unauthenticated")
        if not config["influxdb_token"]:
            logger.warning("INFLUXDB_TOKEN is not set! Sensor enrichment may not function correctly.")

        return config

    @staticmethod
    def load_graphs_config(path: str = None) -> Dict[str, Any]:
        """Load per-type graph overrides from config/graphs.yaml"""
        graphs_path = path or str(CONFIG_DIR / "graphs.yaml")
        if not os.path.exists(graphs_path):
            logger.info(f"No graph overrides at {graphs_path}, using defaults")
            return {"graphs": {}}

        with open(graphs_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            logger.warning(f"Ignoring {graphs_path}: expected a mapping")
            return {"graphs": {}}
        loaded.setdefault("graphs", {})
        logger.info(f"Loaded {len(loaded['graphs'] or {})} graph overrides from {graphs_path}")
        return loaded
