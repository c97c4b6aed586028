"""
Edit Session

Holds the baseline findings (what the last detection or regeneration
produced), the working copy the engineer is curating, and the change ledger
that records every accepted mutation between the two.

All mutations go through the apply_* methods. Each one validates first and
only then touches state, so a raised error always leaves the session exactly
as it was.
"""
import logging
from typing import Callable, Iterable, List, Literal, Optional

from ..errors import InvalidStateError, NotFoundError
from ..ingestion.models import Component, Finding, LedgerEntry
from .clock import IdFactory, SystemClock
from .ledger import ChangeLedger

logger = logging.getLogger("isoguard.session")

Source = Literal["manual", "chat"]

_VERBS = {"add": "Added", "edit": "Modified", "delete": "Deleted", "restore": "Restored"}


def _copy_all(findings: Iterable[Finding]) -> List[Finding]:
    return [f.model_copy(deep=True) for f in findings]


class EditSession:
    def __init__(self, clock=None, new_id: Optional[Callable[[str], str]] = None):
        self._clock = clock or SystemClock()
        self._new_id = new_id or IdFactory()
        self._baseline: List[Finding] = []
        self._current: List[Finding] = []
        self._components: List[Component] = []
        self._ledger = ChangeLedger()
        self._seeded = False

    # --- queries ---

    @property
    def dirty(self) -> bool:
        return len(self._ledger) > 0

    @property
    def seeded(self) -> bool:
        return self._seeded

    def baseline_findings(self) -> List[Finding]:
        return _copy_all(self._baseline)

    def current_findings(self) -> List[Finding]:
        return _copy_all(self._current)

    def components(self) -> List[Component]:
        return [c.model_copy(deep=True) for c in self._components]

    def ledger_entries(self) -> List[LedgerEntry]:
        return [e.model_copy(deep=True) for e in self._ledger.entries()]

    def find(self, finding_id: str) -> Optional[Finding]:
        idx = self._index_of(finding_id)
        return None if idx is None else self._current[idx].model_copy(deep=True)

    # --- seeding / lifecycle ---

    def seed(self, findings: Iterable[Finding]) -> None:
        if self.dirty:
            raise InvalidStateError("Cannot seed a session with unsaved changes; discard or regenerate first.")

        seeded = _copy_all(findings)
        seen = set()
        for f in seeded:
            if not f.id:
                f.id = self._new_id("finding")
            if f.id in seen:
                raise InvalidStateError(f"Duplicate finding id in seed: {f.id}")
            seen.add(f.id)

        self._baseline = seeded
        self._current = _copy_all(seeded)
        self._ledger.clear()
        self._seeded = True
        logger.debug("Session seeded with %d findings", len(seeded))

    def seed_components(self, components: Iterable[Component]) -> None:
        seeded = [c.model_copy(deep=True) for c in components]
        for c in seeded:
            if not c.id:
                c.id = self._new_id("component")
        self._components = seeded
        logger.debug("Session seeded with %d components", len(seeded))

    def discard(self) -> None:
        dropped = len(self._ledger)
        self._current = _copy_all(self._baseline)
        self._ledger.clear()
        logger.debug("Discarded %d ledger entries", dropped)

    def commit(self, new_baseline: Iterable[Finding]) -> None:
        committed = _copy_all(new_baseline)
        self._baseline = committed
        self._current = _copy_all(committed)
        self._ledger.clear()
        logger.debug("Committed new baseline of %d findings", len(committed))

    def reset(self) -> None:
        self._baseline = []
        self._current = []
        self._components = []
        self._ledger.clear()
        self._seeded = False

    # --- mutations ---

    def apply_add(self, finding: Finding, source: Source = "manual") -> LedgerEntry:
        added = finding.model_copy(deep=True)
        if not added.id:
            added.id = self._new_id("finding")
        if self._index_of(added.id) is not None:
            raise InvalidStateError(f"Finding id already present: {added.id}")

        added.provenance = added.provenance.model_copy(
            update={"is_new": True, "last_modified": self._clock.now()}
        )
        self._current.append(added)
        return self._record("add", added.id, None, added, source)

    def apply_edit(self, finding: Finding, source: Source = "manual") -> LedgerEntry:
        idx = self._index_of(finding.id)
        if idx is None:
            raise NotFoundError("finding", finding.id)

        before = self._current[idx]
        edited = finding.model_copy(deep=True)
        edited.provenance = before.provenance.model_copy(
            update={"is_modified": True, "last_modified": self._clock.now()}
        )
        self._current[idx] = edited
        return self._record("edit", edited.id, before, edited, source)

    def apply_delete(self, finding_id: str, source: Source = "manual") -> LedgerEntry:
        idx = self._index_of(finding_id)
        if idx is None:
            raise NotFoundError("finding", finding_id)

        removed = self._current.pop(idx)
        return self._record("delete", finding_id, removed, None, source)

    def apply_restore(self, entry_id: str, source: Source = "manual") -> LedgerEntry:
        entry = self._ledger.get(entry_id)
        if entry.type != "delete" or entry.before_state is None:
            raise InvalidStateError(f"Ledger entry {entry_id} is a '{entry.type}' entry, only deletions can be restored")
        if self._index_of(entry.target_id) is not None:
            raise InvalidStateError(f"Finding {entry.target_id} is already present")

        revived = entry.before_state.model_copy(deep=True)
        self._current.append(revived)
        return self._record("restore", revived.id, None, revived, source)

    # --- internals ---

    def _index_of(self, finding_id: str) -> Optional[int]:
        for i, f in enumerate(self._current):
            if f.id == finding_id:
                return i
        return None

    def _record(
        self,
        kind: str,
        target_id: str,
        before: Optional[Finding],
        after: Optional[Finding],
        source: Source,
    ) -> LedgerEntry:
        subject = after if after is not None else before
        verb = _VERBS[kind] + (" via chat" if source == "chat" else "")
        entry = LedgerEntry(
            id=self._new_id("change"),
            timestamp=self._clock.now(),
            type=kind,
            target_id=target_id,
            description=f"{verb}: {subject.description}",
            before_state=before.model_copy(deep=True) if before is not None else None,
            after_state=after.model_copy(deep=True) if after is not None else None,
            source=source,
        )
        self._ledger.append(entry)
        logger.debug("%s %s (%s)", kind, target_id, source)
        return entry.model_copy(deep=True)
