"""Trace sources for simulation objects.

Objects whose state changes are interesting to observe derive from
TracedSubject and declare the names of their trace sources. Observers are
connected per source name and notified synchronously whenever the subject
fires that source.
"""

from typing import Any, Dict, List, Protocol, Tuple


class Observer(Protocol):
    """Anything that can be notified by a trace source."""

    def notify(self, *args: Any) -> None: ...


class TracedSubject:
    """Base class for objects exposing named trace sources.

    Attributes:
        trace_sources: Names of the trace sources this class fires.
        hooks: Connected observers keyed by trace source name.
    """

    trace_sources: Tuple[str, ...] = ()

    def __init__(self) -> None:
        self.hooks: Dict[str, List[Observer]] = {
            name: [] for name in self.trace_sources
        }

    def trace_connect(self, source: str, observer: Observer) -> None:
        """Connect an observer to a trace source.

        Args:
            source: The trace source name.
            observer: Object whose ``notify`` is called when the source fires.
        """
        if source not in self.hooks:
            raise ValueError(
                f"Unknown trace source {source!r} on {type(self).__name__}"
            )
        self.hooks[source].append(observer)

    def trace_disconnect(self, source: str, observer: Observer) -> None:
        """Disconnect a previously connected observer."""
        if source in self.hooks and observer in self.hooks[source]:
            self.hooks[source].remove(observer)

    def fire(self, source: str, *args: Any) -> None:
        """Notify every observer connected to ``source``.

        Args:
            source: The trace source that changed.
            *args: Values passed to each observer.
        """
        for observer in self.hooks.get(source, ()):
            observer.notify(*args)
