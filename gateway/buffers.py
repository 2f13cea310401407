from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Deque, Dict, List, Optional


MAX_LOGS = 200


@dataclass(frozen=True)
class LogEntry:
    ts: str
    level: str
    service: str
    msg: str

    def to_dict(self) -> Dict[str, str]:
        return {"ts": self.ts, "level": self.level, "service": self.service, "msg": self.msg}


class RingLog:
    '''Bounded in-memory log of operational events for the /obs endpoints.'''
    def __init__(self, capacity: int = MAX_LOGS, default_service: str = "gateway"):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.default_service = default_service
        # maxlen: en append på full kö släpper exakt den äldsta posten
        self._dq: Deque[LogEntry] = deque(maxlen=capacity)
        self._lock = Lock()

    def append(
        self,
        level: Optional[str] = None,
        service: Optional[str] = None,
        msg: Optional[str] = None,
    ) -> LogEntry:
        entry = LogEntry(
            ts=now_iso(),
            level=level or "info",
            service=service or self.default_service,
            msg=msg or "",
        )
        with self._lock:
            self._dq.append(entry)
        return entry

    def snapshot(self) -> List[LogEntry]:
        '''Copy of the ring, most recent first.'''
        with self._lock:
            items = list(self._dq)
        items.reverse()
        return items

    def latest(self, limit: int = 50) -> List[LogEntry]:
        if limit <= 0:
            return []
        return self.snapshot()[:limit]

    def __len__(self) -> int:
        return len(self._dq)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
