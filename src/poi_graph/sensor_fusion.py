"""
Latest sensor readings per device, fetched concurrently.
"""

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, Iterable, List, Optional

from poi_graph.deadline import Deadline
from poi_graph.errors import TimeSeriesUnavailable
from poi_graph.models import Poi, SensorSnapshot
from poi_graph.timeseries import InfluxTimeSeriesClient, station_id_from_device_uri

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 8

# (measurement, snapshot attribute, field); weather noise wins over traffic noise
_STREAMS = (
    ("air_quality", "aqi", "aqi"),
    ("weather", "temperature", "temperature"),
    ("weather", "noise_level", "noise_level"),
    ("traffic", "noise_level", "noise_level"),
)


class SensorFusion:
    def __init__(self, client: InfluxTimeSeriesClient, max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        self.client = client
        self.max_concurrent = max(1, int(max_concurrent))

    def snapshot_for(self, device_uri: str) -> SensorSnapshot:
        """
        Reduce the device's streams to one snapshot.

        A measurement that fails contributes nothing; the others still fill in.
        """
        station_id = station_id_from_device_uri(device_uri)
        fields_by_measurement: Dict[str, List[str]] = OrderedDict()
        for measurement, _, field in _STREAMS:
            fields_by_measurement.setdefault(measurement, []).append(field)

        latest = {}
        for measurement, fields in fields_by_measurement.items():
            try:
                latest[measurement] = self.client.get_latest_by_station(station_id, measurement, fields)
            except (TimeSeriesUnavailable, ValueError) as e:
                logger.warning(f"No {measurement} data for {device_uri}: {e}")

        snapshot = SensorSnapshot()
        timestamps = []
        for measurement, attr, field in _STREAMS:
            if getattr(snapshot, attr) is not None:
                continue
            reading = latest.get(measurement)
            if not reading:
                continue
            value = reading["data"].get(field)
            if value is None:
                continue
            setattr(snapshot, attr, value)
            if reading.get("timestamp"):
                timestamps.append(reading["timestamp"])

        # RFC3339 strings from one store compare chronologically
        snapshot.timestamp = max(timestamps) if timestamps else None
        return snapshot

    def fuse(self, device_uris: Iterable[str], deadline: Optional[Deadline] = None) -> Dict[str, SensorSnapshot]:
        """
        Snapshot per distinct device.

        Devices with no data get an all-null snapshot. Devices still pending
        when the deadline expires are left out of the map.
        """
        devices = list(OrderedDict.fromkeys(d for d in device_uris if d))
        if not devices:
            return {}

        executor = ThreadPoolExecutor(max_workers=min(self.max_concurrent, len(devices)))
        try:
            futures = {executor.submit(self.snapshot_for, device): device for device in devices}
            timeout = deadline.remaining() if deadline is not None else None
            done, pending = wait(futures, timeout=timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if pending:
            logger.warning(f"Deadline reached, skipped sensor data for {len(pending)} devices")

        snapshots = {}
        for future in done:
            snapshots[futures[future]] = future.result()
        logger.info(f"Sensor data for {len(snapshots)} of {len(devices)} devices")
        return {device: snapshots[device] for device in devices if device in snapshots}

    @staticmethod
    def attach(pois: List[Poi], coverage: Dict[str, str], snapshots: Dict[str, SensorSnapshot]) -> List[Poi]:
        for poi in pois:
            device = coverage.get(poi.uri)
            if device is None:
                continue
            poi.device = device
            poi.sensor_data = snapshots.get(device)
        return pois
