from typing import List, Optional

from ..errors import NotFoundError
from ..ingestion.models import LedgerEntry


class ChangeLedger:
    """Append-only audit trail of accepted finding mutations."""

    def __init__(self) -> None:
        self._entries: List[LedgerEntry] = []

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        self._entries.append(entry)
        return entry

    def entries(self) -> List[LedgerEntry]:
        return list(self._entries)

    def find(self, entry_id: str) -> Optional[LedgerEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def get(self, entry_id: str) -> LedgerEntry:
        entry = self.find(entry_id)
        if entry is None:
            raise NotFoundError("ledger entry", entry_id)
        return entry

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
