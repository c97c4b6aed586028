from collections import OrderedDict
from typing import List

from ..errors import ActionNotFoundError, InvalidStateError
from ..ingestion.models import PendingAction


class PendingActionQueue:
    """Chat proposals waiting for the engineer to confirm or deny them."""

    def __init__(self) -> None:
        self._actions: "OrderedDict[str, PendingAction]" = OrderedDict()

    def enqueue(self, action: PendingAction) -> None:
        if action.id in self._actions:
            raise InvalidStateError(f"Pending action already queued: {action.id}")
        self._actions[action.id] = action.model_copy(deep=True)

    def get(self, action_id: str) -> PendingAction:
        action = self._actions.get(action_id)
        if action is None:
            raise ActionNotFoundError(action_id)
        return action.model_copy(deep=True)

    def dequeue(self, action_id: str) -> PendingAction:
        action = self._actions.pop(action_id, None)
        if action is None:
            raise ActionNotFoundError(action_id)
        return action

    def all(self) -> List[PendingAction]:
        return [a.model_copy(deep=True) for a in self._actions.values()]

    def clear(self) -> None:
        self._actions.clear()

    def __contains__(self, action_id: str) -> bool:
        return action_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)
