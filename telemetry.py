"""
In-process telemetry for applied transforms.

Two retention policies share one interface: `UnboundedTelemetryCache` keeps
every record and grows for the life of the process, `BoundedTelemetryCache`
holds the most recent `BOUNDED_CAPACITY` records and evicts the oldest first.
"""

from __future__ import annotations

import abc
import copy
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterator, List

from PIL import Image

logger = logging.getLogger("telemetry")

BOUNDED_CAPACITY = 10
DEFAULT_RESOLUTION = 96.0
POLICIES = ("unbounded", "bounded")
# Zero keeps records small; a value such as 1024 * 1024 makes unbounded growth easy to see.
TELEMETRY_PAYLOAD_BYTES = 0


@dataclass(frozen=True)
class TelemetryRecord:
    conversion_kind: str
    metadata: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)
    identifier: uuid.UUID = field(default_factory=uuid.uuid4)
    payload: bytes = field(default=b"", repr=False, compare=False)

    @classmethod
    def from_image(
        cls, image: Image.Image, conversion_kind: str, payload_bytes: int = 0
    ) -> "TelemetryRecord":
        return cls(
            conversion_kind=conversion_kind,
            metadata=copy.deepcopy(image.info),
            payload=bytes(payload_bytes),
        )

    @property
    def horizontal_resolution(self) -> float:
        return self._resolution(0)

    @property
    def vertical_resolution(self) -> float:
        return self._resolution(1)

    def _resolution(self, axis: int) -> float:
        dpi = self.metadata.get("dpi")
        if not dpi:
            return DEFAULT_RESOLUTION
        return float(dpi[axis])

    def __str__(self) -> str:
        stamp = f"{self.timestamp:%m/%d/%Y %I:%M:%S}.{self.timestamp.microsecond // 100:04d}"
        return (
            f"[{stamp}] conversion: '{self.conversion_kind}', "
            f"horizontal resolution: {self.horizontal_resolution:g}, "
            f"vertical resolution: {self.vertical_resolution:g}"
        )


class TelemetryCache(abc.ABC):
    """Insertion-ordered store of `TelemetryRecord`s."""

    def __init__(self, payload_bytes: int = TELEMETRY_PAYLOAD_BYTES) -> None:
        if payload_bytes < 0:
            raise ValueError("payload_bytes must be >= 0")
        self.payload_bytes = payload_bytes

    def add_telemetry(self, image: Image.Image, conversion_kind: str) -> None:
        self._insert(TelemetryRecord.from_image(image, conversion_kind, self.payload_bytes))

    @abc.abstractmethod
    def _insert(self, record: TelemetryRecord) -> None: ...

    @abc.abstractmethod
    def count(self) -> int: ...

    @abc.abstractmethod
    def __iter__(self) -> Iterator[TelemetryRecord]: ...

    def __len__(self) -> int:
        return self.count()

    def records(self) -> List[TelemetryRecord]:
        return list(self)


class UnboundedTelemetryCache(TelemetryCache):
    # Never evicts: memory grows with every transform for the life of the process.

    def __init__(self, payload_bytes: int = TELEMETRY_PAYLOAD_BYTES) -> None:
        super().__init__(payload_bytes)
        self._records: List[TelemetryRecord] = []

    def _insert(self, record: TelemetryRecord) -> None:
        self._records.append(record)

    def count(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TelemetryRecord]:
        return iter(list(self._records))


class BoundedTelemetryCache(TelemetryCache):
    def __init__(
        self, capacity: int = BOUNDED_CAPACITY, payload_bytes: int = TELEMETRY_PAYLOAD_BYTES
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        super().__init__(payload_bytes)
        self.capacity = capacity
        self._records: Deque[TelemetryRecord] = deque()

    def _insert(self, record: TelemetryRecord) -> None:
        if len(self._records) == self.capacity:
            evicted = self._records.popleft()
            logger.debug("Evicted %s record from %s", evicted.conversion_kind, evicted.timestamp)
        self._records.append(record)

    def count(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TelemetryRecord]:
        return iter(list(self._records))


def make_cache(
    policy: str = "unbounded",
    capacity: int = BOUNDED_CAPACITY,
    payload_bytes: int = TELEMETRY_PAYLOAD_BYTES,
) -> TelemetryCache:
    if policy == "unbounded":
        return UnboundedTelemetryCache(payload_bytes)
    if policy == "bounded":
        return BoundedTelemetryCache(capacity, payload_bytes)
    raise ValueError(f"Unknown cache policy: {policy!r} (expected one of {', '.join(POLICIES)})")
