"""
Bulk source/target matrix execution with paged consumption.

Bind validates and freezes the inputs, execute issues exactly one
sources_to_targets request and buffers every entry, then fetch hands the
entries out page by page. A runner belongs to one consumer; its cursor is
not safe to share between readers. The HTTP endpoint parks executed
runners in MatrixRunnerStore so later pages read the same buffer.
"""
import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Iterator, Optional, Sequence

import numpy as np

from travel_time.core.config import settings
from travel_time.core.exceptions import ValidationException
from travel_time.services.geometry.types import Coordinate
from travel_time.services.routing.orchestrator import MatrixEntry, RoutingOrchestrator, as_coordinate

logger = logging.getLogger(__name__)


class BatchMatrixRunner:
    """
    Two-phase matrix runner.

    Example:
        runner = BatchMatrixRunner.bind(src_lats, src_lons, dst_lats, dst_lons, "auto")
        runner.execute(orchestrator)
        for page in runner.pages():
            ...
    """

    def __init__(
        self,
        sources: Sequence[Coordinate],
        targets: Sequence[Coordinate],
        mode: str,
        page_size: Optional[int] = None,
    ):
        self.sources = tuple(sources)
        self.targets = tuple(targets)
        self.mode = mode
        self.page_size = page_size or settings.MATRIX_PAGE_SIZE
        if self.page_size <= 0:
            raise ValidationException(
                message=f"page_size must be positive, got {self.page_size}",
                details={"page_size": self.page_size},
            )

        self._entries: Optional[list[MatrixEntry]] = None
        self._cursor = 0
        self.done = False

    @classmethod
    def bind(
        cls,
        src_lats: Sequence[float],
        src_lons: Sequence[float],
        dst_lats: Sequence[float],
        dst_lons: Sequence[float],
        mode: str = settings.DEFAULT_COSTING,
        page_size: Optional[int] = None,
    ) -> "BatchMatrixRunner":
        """Validate parallel lat/lon arrays and freeze them as coordinates."""
        if len(src_lats) != len(src_lons):
            raise ValidationException(
                message="Source lat/lon arrays must have same length",
                details={"lats": len(src_lats), "lons": len(src_lons)},
            )
        if len(dst_lats) != len(dst_lons):
            raise ValidationException(
                message="Destination lat/lon arrays must have same length",
                details={"lats": len(dst_lats), "lons": len(dst_lons)},
            )

        sources = [as_coordinate((lat, lon)) for lat, lon in zip(src_lats, src_lons)]
        targets = [as_coordinate((lat, lon)) for lat, lon in zip(dst_lats, dst_lons)]
        return cls(sources, targets, mode, page_size)

    @property
    def executed(self) -> bool:
        return self._entries is not None

    @property
    def total(self) -> int:
        return len(self._entries) if self._entries is not None else 0

    @property
    def cursor(self) -> int:
        return self._cursor

    def execute(self, orchestrator: RoutingOrchestrator) -> int:
        """Run the single matrix request; returns the number of entries buffered."""
        if self._entries is not None:
            return len(self._entries)

        self._entries = orchestrator.matrix(self.sources, self.targets, self.mode)
        self._cursor = 0
        self.done = not self._entries
        logger.info(
            f"Matrix {len(self.sources)}x{len(self.targets)} ({self.mode}) buffered "
            f"{len(self._entries)} entries, page size {self.page_size}"
        )
        return len(self._entries)

    def fetch(self) -> list[MatrixEntry]:
        """Next page of at most page_size entries; [] once done."""
        if self._entries is None:
            raise ValidationException(message="Matrix runner has not been executed")
        if self.done:
            return []

        page = self._entries[self._cursor : self._cursor + self.page_size]
        self._cursor += len(page)
        if self._cursor >= len(self._entries):
            self.done = True
        return page

    def seek(self, cursor: int) -> None:
        """Move the cursor forward to an absolute entry offset."""
        if cursor < self._cursor:
            raise ValidationException(
                message=f"Cursor cannot move backwards ({cursor} < {self._cursor})",
                details={"cursor": cursor},
            )
        self._cursor = min(cursor, self.total)
        self.done = self._cursor >= self.total

    def pages(self) -> Iterator[list[MatrixEntry]]:
        while True:
            page = self.fetch()
            if not page:
                return
            yield page

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Full result as (durations, distances) matrices of shape (sources, targets).

        Unreachable cells hold -1.
        """
        if self._entries is None:
            raise ValidationException(message="Matrix runner has not been executed")

        shape = (len(self.sources), len(self.targets))
        durations = np.full(shape, -1.0)
        distances = np.full(shape, -1.0)
        for entry in self._entries:
            durations[entry.from_index, entry.to_index] = entry.duration_s
            distances[entry.from_index, entry.to_index] = entry.distance_m
        return durations, distances


class MatrixRunnerStore:
    """
    Executed runners held between page requests of the HTTP matrix endpoint.

    Keyed by a generated matrix id. Entries expire after ttl_seconds and the
    least recently used entry is dropped once max_entries is reached, so a
    consumer that abandons its cursor does not pin the buffer forever.
    """

    def __init__(
        self,
        max_entries: int = settings.MATRIX_STORE_MAX_ENTRIES,
        ttl_seconds: float = settings.MATRIX_STORE_TTL_SECONDS,
    ):
        self.max_entries = max_entries
        self.ttl = ttl_seconds
        self._runners: "OrderedDict[str, tuple[float, BatchMatrixRunner]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._runners)

    def put(self, runner: BatchMatrixRunner) -> str:
        """Keep an executed runner; returns its matrix id."""
        if not runner.executed:
            raise ValidationException(message="Only executed matrix runners can be stored")

        matrix_id = uuid.uuid4().hex
        with self._lock:
            self._runners[matrix_id] = (time.monotonic(), runner)
            while len(self._runners) > self.max_entries:
                dropped, _ = self._runners.popitem(last=False)
                logger.info(f"Matrix store full, dropped {dropped}")
        return matrix_id

    def get(self, matrix_id: str) -> Optional[BatchMatrixRunner]:
        """Runner for matrix_id, or None if unknown or expired."""
        with self._lock:
            item = self._runners.get(matrix_id)
            if item is None:
                return None
            stored_at, runner = item
            if time.monotonic() - stored_at >= self.ttl:
                del self._runners[matrix_id]
                logger.debug(f"Matrix {matrix_id} expired")
                return None
            self._runners.move_to_end(matrix_id)
            return runner

    def evict(self, matrix_id: str) -> None:
        with self._lock:
            self._runners.pop(matrix_id, None)


matrix_runner_store = MatrixRunnerStore()
