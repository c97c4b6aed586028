"""
Action Reconciler

Turns a confirmed chat proposal into edit-session mutations. A proposal is
only looked at here, never applied by the chat collaborator itself.
"""
import logging
from typing import List

from ..errors import InvalidStateError
from ..ingestion.models import LedgerEntry, PendingAction
from ..session.edit_session import EditSession
from .pending import PendingActionQueue

logger = logging.getLogger("isoguard.chat")


class ActionReconciler:
    def __init__(self, session: EditSession, queue: PendingActionQueue):
        self.session = session
        self.queue = queue

    def confirm(self, action_id: str) -> List[LedgerEntry]:
        action = self.queue.get(action_id)
        entries = self._apply(action)
        self.queue.dequeue(action_id)
        logger.info("Confirmed %s action %s (%d change(s))", action.kind, action_id, len(entries))
        return entries

    def deny(self, action_id: str) -> PendingAction:
        action = self.queue.dequeue(action_id)
        logger.info("Denied %s action %s", action.kind, action_id)
        return action

    def _apply(self, action: PendingAction) -> List[LedgerEntry]:
        if not action.payload:
            raise InvalidStateError(f"Pending action {action.id} carries no findings")

        if action.kind in ("add", "bulk-add"):
            self._check_addable(action)
            entries = []
            for proposed in action.payload:
                proposed.provenance = proposed.provenance.model_copy(
                    update={"created_by": "ai", "is_new": True}
                )
                entries.append(self.session.apply_add(proposed, source="chat"))
            return entries

        if action.kind == "edit":
            return [self.session.apply_edit(action.payload[0], source="chat")]

        if action.kind == "delete":
            return [self.session.apply_delete(action.payload[0].id, source="chat")]

        raise InvalidStateError(f"Unsupported action kind: {action.kind}")

    def _check_addable(self, action: PendingAction) -> None:
        # Validate the whole batch up front so a bulk-add lands entirely or not at all.
        present = {f.id for f in self.session.current_findings()}
        seen = set()
        for proposed in action.payload:
            if not proposed.id:
                continue
            if proposed.id in present or proposed.id in seen:
                raise InvalidStateError(f"Finding id already present: {proposed.id}")
            seen.add(proposed.id)
