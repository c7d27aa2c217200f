"""Storage for computed iteration metrics."""

import json
import os
import threading

from services.dates import parse_datetime
from services.models import Metric


class MetricsRepository:
    """Interface for metric storage, keyed by metric id."""

    def save(self, metric: Metric):
        raise NotImplementedError

    def find_by_id(self, metric_id: str):
        raise NotImplementedError

    def find_by_iteration_id(self, iteration_id: str):
        raise NotImplementedError

    def find_by_date_range(self, start_date: str, end_date: str) -> list:
        raise NotImplementedError

    def find_all(self) -> list:
        raise NotImplementedError

    def delete(self, metric_id: str) -> bool:
        raise NotImplementedError

    def delete_all(self) -> int:
        raise NotImplementedError


class FileMetricsRepository(MetricsRepository):
    """Keeps all metrics in a single JSON file: {metric_id: metric}."""

    FILE_NAME = "metrics.json"

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.file_path = os.path.join(data_dir, self.FILE_NAME)
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not os.path.exists(self.file_path):
            return {}
        with open(self.file_path, "r") as f:
            return json.load(f)

    def _write(self, metrics: dict):
        os.makedirs(self.data_dir, exist_ok=True)
        tmp_path = f"{self.file_path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(metrics, f, indent=2, default=str)
        os.replace(tmp_path, self.file_path)

    def save(self, metric: Metric):
        """Store a metric, replacing any earlier one for the same iteration."""
        with self._lock:
            metrics = self._load()
            stale = [
                key for key, value in metrics.items()
                if value.get("iterationId") == metric.iteration_id and key != metric.id
            ]
            for key in stale:
                del metrics[key]
            metrics[metric.id] = metric.to_dict()
            self._write(metrics)

    def find_by_id(self, metric_id: str):
        data = self._load().get(metric_id)
        return Metric.from_dict(data) if data else None

    def find_by_iteration_id(self, iteration_id: str):
        for data in self._load().values():
            if data.get("iterationId") == iteration_id:
                return Metric.from_dict(data)
        return None

    def find_by_date_range(self, start_date: str, end_date: str) -> list:
        """Metrics whose iteration starts within [start_date, end_date]."""
        start = parse_datetime(start_date)
        end = parse_datetime(end_date)
        matches = []
        for data in self._load().values():
            metric_start = parse_datetime(data.get("startDate"))
            if metric_start is None:
                continue
            if (start is None or metric_start >= start) and (end is None or metric_start <= end):
                matches.append(Metric.from_dict(data))
        return sorted(matches, key=lambda m: m.start_date)

    def find_all(self) -> list:
        return [Metric.from_dict(data) for data in self._load().values()]

    def delete(self, metric_id: str) -> bool:
        with self._lock:
            metrics = self._load()
            if metric_id not in metrics:
                return False
            del metrics[metric_id]
            self._write(metrics)
            return True

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._load())
            self._write({})
            return count
