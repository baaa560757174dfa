"""
Read-only client for sensor readings stored in InfluxDB 2.x.

Queries are Flux scripts posted to /api/v2/query; the CSV response is parsed
into plain dicts. Stations are tagged with station_id, which is the last
":"-separated segment of the device URI used in the coverage graph
(urn:ngsi-ld:Device:Hanoi:station:HoGuom -> HoGuom).
"""

import csv
import io
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import requests

from poi_graph.errors import TimeSeriesUnavailable

logger = logging.getLogger(__name__)

MEASUREMENTS = {
    "air_quality": ("aqi", "pm25", "pm10"),
    "flood": ("rain_1h", "water_level"),
    "traffic": ("avg_speed", "intensity", "noise_level"),
    "weather": ("noise_level", "humidity", "rain_1h", "temperature", "wind_speed"),
}

DEFAULT_URL = "http://localhost:8086"
DEFAULT_BUCKET = "iot_data"
DEFAULT_ORG = "fithou"
LATEST_RANGE = "-24h"

# Relative durations ("-1h", "-7d"), now(), or RFC3339 timestamps
_RANGE_BOUND = re.compile(r'^(-?\d+(ns|us|ms|s|m|h|d|w|mo|y)|now\(\)|\d{4}-\d{2}-\d{2}T[0-9:.]+(Z|[+-]\d{2}:\d{2}))$')
_WINDOW = re.compile(r'^\d+(s|m|h|d|w|mo|y)$')


def station_id_from_device_uri(device_uri: str) -> str:
    return device_uri.split(':')[-1] or device_uri


def validate_measurement(measurement: str, fields: Optional[Sequence[str]] = None) -> List[str]:
    """Return the fields to read, raising ValueError for unknown names."""
    if measurement not in MEASUREMENTS:
        raise ValueError(f"Invalid measurement: {measurement}. Available: {', '.join(MEASUREMENTS)}")
    valid = MEASUREMENTS[measurement]
    if fields:
        invalid = [f for f in fields if f not in valid]
        if invalid:
            raise ValueError(f"Invalid fields for {measurement}: {', '.join(invalid)}. "
                             f"Available: {', '.join(valid)}")
        return list(fields)
    return list(valid)


def _flux_string(value: str) -> str:
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


def _field_filter(fields: Sequence[str]) -> str:
    return " or ".join(f'r["_field"] == {_flux_string(f)}' for f in fields)


def parse_csv_tables(text: str) -> List[Dict[str, str]]:
    """
    Parse an InfluxDB CSV response into one dict per record.

    Tables are separated by blank lines and each starts with its own header;
    annotation rows (#datatype, #group, #default) are skipped.
    """
    records = []
    header = None
    for row in csv.reader(io.StringIO(text)):
        if not row or all(not cell.strip() for cell in row):
            header = None
            continue
        if row[0].startswith('#'):
            continue
        if header is None:
            header = row
            continue
        records.append(dict(zip(header, row)))
    return records


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        logger.debug(f"Non-numeric sensor value: {value!r}")
        return None


class InfluxTimeSeriesClient:
    def __init__(self, url: str = DEFAULT_URL, token: str = "", org: str = DEFAULT_ORG,
                 bucket: str = DEFAULT_BUCKET, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.url = url.rstrip('/')
        self.token = token
        self.org = org
        self.bucket = bucket
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Dict) -> "InfluxTimeSeriesClient":
        return cls(
            url=config.get("influxdb_url") or DEFAULT_URL,
            token=config.get("influxdb_token") or "",
            org=config.get("influxdb_org") or DEFAULT_ORG,
            bucket=config.get("influxdb_bucket") or DEFAULT_BUCKET,
        )

    def query(self, flux: str) -> List[Dict[str, str]]:
        """
        Execute a Flux query.

        Raises:
            TimeSeriesUnavailable: transport or HTTP error
        """
        logger.debug(f"Flux query:\n{flux}")
        headers = {
            "Authorization": f"Token {self.token}",
            "Accept": "application/csv",
            "Content-Type": "application/json",
        }
        body = {
            "query": flux,
            "type": "flux",
            "dialect": {"header": True, "annotations": []},
        }
        try:
            resp = self.session.post(
                f"{self.url}/api/v2/query",
                params={"org": self.org},
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TimeSeriesUnavailable(f"InfluxDB query failed: {e}") from e
        return parse_csv_tables(resp.text)

    def get_latest_by_station(self, station_id: str, measurement: str,
                              fields: Optional[Sequence[str]] = None) -> Optional[Dict[str, Any]]:
        """
        Latest value of each field for one station over the last 24h.

        Returns:
            {"stationId", "measurement", "data": {field: value|None}, "timestamp"}
            or None when the station has no readings.
        """
        selected = validate_measurement(measurement, fields)
        flux = f"""
from(bucket: {_flux_string(self.bucket)})
  |> range(start: {LATEST_RANGE})
  |> filter(fn: (r) => r["_measurement"] == {_flux_string(measurement)})
  |> filter(fn: (r) => r["station_id"] == {_flux_string(station_id)})
  |> filter(fn: (r) => {_field_filter(selected)})
  |> last()
"""
        records = self.query(flux)
        if not records:
            return None

        data: Dict[str, Optional[float]] = {field: None for field in selected}
        latest = ""
        for record in records:
            data[record.get("_field")] = _to_float(record.get("_value"))
            record_time = record.get("_time") or ""
            if record_time > latest:
                latest = record_time
        return {
            "stationId": station_id,
            "measurement": measurement,
            "data": data,
            "timestamp": latest or None,
        }

    def get_history_by_station(self, station_id: str, measurement: str, start: str,
                               stop: str = "now()", fields: Optional[Sequence[str]] = None,
                               aggregate_window: Optional[str] = None) -> List[Dict[str, Any]]:
        """Time-ordered readings, optionally mean-aggregated per window."""
        selected = validate_measurement(measurement, fields)
        for label, bound in (("start", start), ("stop", stop)):
            if not _RANGE_BOUND.match(bound):
                raise ValueError(f"Invalid {label}: {bound}")
        if aggregate_window and not _WINDOW.match(aggregate_window):
            raise ValueError(f"Invalid aggregate window: {aggregate_window}")

        flux = f"""
from(bucket: {_flux_string(self.bucket)})
  |> range(start: {start}, stop: {stop})
  |> filter(fn: (r) => r["_measurement"] == {_flux_string(measurement)})
  |> filter(fn: (r) => r["station_id"] == {_flux_string(station_id)})
  |> filter(fn: (r) => {_field_filter(selected)})
"""
        if aggregate_window:
            flux += f"  |> aggregateWindow(every: {aggregate_window}, fn: mean, createEmpty: false)\n"
        flux += '  |> sort(columns: ["_time"])\n'

        return [
            {
                "time": record.get("_time"),
                "stationId": record.get("station_id"),
                "measurement": record.get("_measurement"),
                "field": record.get("_field"),
                "value": _to_float(record.get("_value")),
            }
            for record in self.query(flux)
        ]

    def get_latest_all_stations(self, measurement: str,
                                fields: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        selected = validate_measurement(measurement, fields)
        flux = f"""
from(bucket: {_flux_string(self.bucket)})
  |> range(start: {LATEST_RANGE})
  |> filter(fn: (r) => r["_measurement"] == {_flux_string(measurement)})
  |> filter(fn: (r) => {_field_filter(selected)})
  |> last()
  |> group(columns: ["station_id", "_field"])
"""
        stations: Dict[str, Dict[str, Any]] = {}
        for record in self.query(flux):
            station_id = record.get("station_id")
            if not station_id:
                continue
            station = stations.setdefault(station_id, {
                "stationId": station_id,
                "measurement": measurement,
                "data": {field: None for field in selected},
                "timestamp": None,
            })
            station["data"][record.get("_field")] = _to_float(record.get("_value"))
            record_time = record.get("_time")
            if record_time and (station["timestamp"] is None or record_time > station["timestamp"]):
                station["timestamp"] = record_time
        return list(stations.values())

    def get_data_by_device_uri(self, device_uri: str, measurement: Optional[str] = None,
                               fields: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """
        Latest readings for the station behind a device URI.

        Without a measurement every known measurement is tried and only those
        with at least one non-null field are returned. A failing
        measurement is skipped.
        """
        station_id = station_id_from_device_uri(device_uri)
        logger.debug(f"Station ID for {device_uri}: {station_id}")

        if measurement:
            result = self.get_latest_by_station(station_id, measurement, fields)
            return [result] if result else []

        results = []
        for name in MEASUREMENTS:
            try:
                result = self.get_latest_by_station(station_id, name)
            except TimeSeriesUnavailable as e:
                logger.debug(f"No {name} data for station {station_id}: {e}")
                continue
            if result and any(v is not None for v in result["data"].values()):
                results.append(result)
        return results
