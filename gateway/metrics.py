'''
Gatewayns egna metrics i Prometheus textformat.
- Request-tid och antal per method/route/status_code
- Processens starttid och uptime
'''

import time
from collections import defaultdict
from threading import Lock
from typing import Dict, List, Optional, Tuple

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

LabelKey = Tuple[Tuple[str, str], ...]


def _labels_key(labels: Optional[Dict[str, object]]) -> LabelKey:
    if not labels:
        return ()
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_labels(key: LabelKey) -> str:
    if not key:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in key) + "}"


def _format_value(value: float) -> str:
    if value == float("inf"):
        return "+Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class Counter:
    '''A monotonically increasing counter.'''

    kind = "counter"

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._values: Dict[LabelKey, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, labels: Optional[Dict[str, object]] = None) -> None:
        if value < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._values[_labels_key(labels)] += value

    def get(self, labels: Optional[Dict[str, object]] = None) -> float:
        return self._values.get(_labels_key(labels), 0)

    def samples(self) -> List[str]:
        with self._lock:
            items = list(self._values.items())
        return [f"{self.name}{_format_labels(k)} {_format_value(v)}" for k, v in items]


class Gauge(Counter):
    '''A value that can go up and down.'''

    kind = "gauge"

    def set(self, value: float, labels: Optional[Dict[str, object]] = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] = value

    def inc(self, value: float = 1, labels: Optional[Dict[str, object]] = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] += value


class Histogram:
    '''Cumulative bucketed distribution, e.g. request durations in seconds.'''

    kind = "histogram"
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)

    def __init__(self, name: str, help_text: str = "", buckets: Optional[tuple] = None):
        self.name = name
        self.help_text = help_text
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS)) + (float("inf"),)
        self._counts: Dict[LabelKey, List[int]] = {}
        self._sums: Dict[LabelKey, float] = defaultdict(float)
        self._lock = Lock()

    def observe(self, value: float, labels: Optional[Dict[str, object]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            counts = self._counts.setdefault(key, [0] * len(self.buckets))
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value

    def count(self, labels: Optional[Dict[str, object]] = None) -> int:
        counts = self._counts.get(_labels_key(labels))
        return counts[-1] if counts else 0

    def samples(self) -> List[str]:
        with self._lock:
            items = [(k, list(c), self._sums[k]) for k, c in self._counts.items()]
        lines = []
        for key, counts, total in items:
            for bound, n in zip(self.buckets, counts):
                le = _format_labels(key + (("le", _format_value(bound)),))
                lines.append(f"{self.name}_bucket{le} {n}")
            lines.append(f"{self.name}_sum{_format_labels(key)} {_format_value(total)}")
            lines.append(f"{self.name}_count{_format_labels(key)} {counts[-1]}")
        return lines


class MetricsRegistry:
    '''
    Holds the gateway's metrics and renders them on demand.
    - Request-histogram och counter är förregistrerade
    - Starttid och uptime ersätter standard-processmetrics
    '''

    def __init__(self, prefix: str = "gateway"):
        self.prefix = prefix
        self._metrics: Dict[str, object] = {}
        self._lock = Lock()
        self._started = time.time()

        self.request_duration = self.histogram(
            "http_request_duration_seconds", "HTTP request duration in seconds (gateway)"
        )
        self.requests_total = self.counter("http_requests_total", "Total HTTP requests (gateway)")
        self.start_time = self.gauge("process_start_time_seconds", "Start time of the process since unix epoch in seconds")
        self.uptime = self.gauge("process_uptime_seconds", "Seconds since the process started")
        self.start_time.set(self._started)

    def _get_or_create(self, cls, name: str, help_text: str):
        full_name = f"{self.prefix}_{name}" if self.prefix else name
        with self._lock:
            metric = self._metrics.get(full_name)
            if metric is None:
                metric = self._metrics[full_name] = cls(full_name, help_text)
            elif type(metric) is not cls:
                raise ValueError(f"{full_name} is already registered as a {metric.kind}")
            return metric

    def counter(self, name: str, help_text: str = "") -> Counter:
        return self._get_or_create(Counter, name, help_text)

    def gauge(self, name: str, help_text: str = "") -> Gauge:
        return self._get_or_create(Gauge, name, help_text)

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        return self._get_or_create(Histogram, name, help_text)

    def record_request(self, method: str, route: str, status_code: int, seconds: float) -> None:
        labels = {"method": method, "route": route, "status_code": status_code}
        self.request_duration.observe(seconds, labels)
        self.requests_total.inc(1, labels)

    def render(self) -> str:
        '''Export all metrics in Prometheus text format.'''
        self.uptime.set(time.time() - self._started)
        with self._lock:
            metrics = list(self._metrics.values())
        lines = []
        for metric in metrics:
            lines.append(f"# HELP {metric.name} {metric.help_text}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            lines.extend(metric.samples())
        return "\n".join(lines) + "\n"
