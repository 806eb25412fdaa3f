"""Trace records and the append-only text streams they are written to."""

import logging
import os
from typing import Any, IO, NamedTuple, Optional, Tuple

from onoff_sim.core.errors import SchedulingError, TraceIOError

logger = logging.getLogger(__name__)


def format_value(value: Any) -> str:
    if isinstance(value, float):
        return repr(value)
    return str(value)


class TraceRecord(NamedTuple):
    """One timestamped observation.

    Attributes:
        time: Virtual time of the observation.
        subject: Identifier of the observed subject (flow index or address).
        values: Observed values.
    """

    time: float
    subject: Any
    values: Tuple[Any, ...]

    def format(self, subject_first: bool = False) -> str:
        """Render the record as one whitespace separated line."""
        fields = [format_value(float(self.time))] + [format_value(v) for v in self.values]
        if subject_first:
            fields.insert(0, str(self.subject))
        return " ".join(fields)


class OutputStream:
    """Named, append-only text sink for trace records.

    Records must arrive in non-decreasing time order.

    Attributes:
        name: Stream name, e.g. ``cwnd-3``.
        path: File the stream writes to.
        subject_first: Whether lines start with the record's subject.
        record_count: Number of records written.
    """

    def __init__(self, name: str, path: str, subject_first: bool = False) -> None:
        self.name = name
        self.path = path
        self.subject_first = subject_first
        self.record_count = 0
        self.last_time: Optional[float] = None
        try:
            self._file: Optional[IO[str]] = open(path, "w")
        except OSError as exc:
            raise TraceIOError(f"Cannot open output stream {name} at {path}: {exc}") from exc
        logger.debug("Opened output stream %s at %s", name, path)

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, record: TraceRecord) -> None:
        """Append one record.

        Raises:
            SchedulingError: If the record is older than the previous one.
            TraceIOError: If the stream is closed or the write fails.
        """
        if self._file is None:
            raise TraceIOError(f"Output stream {self.name} is closed")
        if self.last_time is not None and record.time < self.last_time:
            raise SchedulingError(
                f"Out of order record in {self.name}: {record.time} after {self.last_time}"
            )
        try:
            self._file.write(record.format(self.subject_first) + "\n")
        except OSError as exc:
            raise TraceIOError(f"Cannot write to output stream {self.name}: {exc}") from exc
        self.last_time = record.time
        self.record_count += 1

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        """Close the underlying file; further closes are no-ops."""
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as exc:
            raise TraceIOError(f"Cannot close output stream {self.name}: {exc}") from exc
        finally:
            self._file = None

    def __repr__(self) -> str:
        return f"OutputStream({self.name}, {os.path.basename(self.path)}, {self.record_count} records)"
