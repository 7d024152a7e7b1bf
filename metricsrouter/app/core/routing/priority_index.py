############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# priority_index.py: Ordered candidate list for one metric key
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Priority-ordered list of candidate backends for a single metric.

Ordering is ascending by ``(priority, created_at)``: lower priority numbers
win, and among equal priorities the longest-registered backend wins. Exact
ties fall back to the identity string so selection is deterministic.

Not thread-safe on its own; BackendRegistry serializes access.
"""

from typing import Iterator, List, Tuple

from metricsrouter.app.core.routing.errors import NoCandidate
from metricsrouter.app.core.routing.models import BackendIdentity, CandidateEntry


class PriorityIndex:
    """Candidate entries for one metric key, unique per backend identity."""

    def __init__(self, metric=None):
        self._metric = metric
        self._entries: List[CandidateEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CandidateEntry]:
        return iter(list(self._entries))

    def __contains__(self, identity: object) -> bool:
        return any(e.identity == identity for e in self._entries)

    def __repr__(self) -> str:
        names = ", ".join(str(e.identity) for e in self._entries)
        return f"PriorityIndex({self._metric}: [{names}])"

    def entries(self) -> Tuple[CandidateEntry, ...]:
        """Entries in selection order."""
        return tuple(self._entries)

    def upsert(self, entry: CandidateEntry) -> None:
        """Replace the entry for ``entry.identity``, or add it.

        The index is unchanged if ordering the new entries fails.
        """
        self._entries = self._merged(entry)

    def with_entry(self, entry: CandidateEntry) -> "PriorityIndex":
        """Return a copy with ``entry`` upserted, leaving this index as is."""
        index = PriorityIndex(self._metric)
        index._entries = self._merged(entry)
        return index

    def remove(self, identity: BackendIdentity) -> bool:
        """Remove ``identity`` if present.

        Returns:
            True if the index is now empty and its owner should prune it
        """
        self._entries = [e for e in self._entries if e.identity != identity]
        self._sort()
        return not self._entries

    def best(self) -> CandidateEntry:
        """Return the preferred candidate.

        Raises:
            NoCandidate: if the index is empty
        """
        if not self._entries:
            raise NoCandidate(self._metric)
        return self._entries[0]

    def _merged(self, entry: CandidateEntry) -> List[CandidateEntry]:
        entries = [e for e in self._entries if e.identity != entry.identity]
        entries.append(entry)
        return sorted(entries, key=lambda e: e.sort_key)

    def _sort(self) -> None:
        self._entries.sort(key=lambda e: e.sort_key)
