"""
Regeneration Coordinator

Rebuilds the annotated and corrected drawings from the working findings and
promotes those findings to the new baseline, but only when every provider
call succeeded. A failure anywhere leaves the session, its ledger and the
pending proposals exactly as they were so the engineer can simply retry.

Both provider calls consume the same snapshot of the findings, taken before
the first await. The corrected drawing is derived from the original image and
the findings, not from the annotated drawing.
"""
import logging
from enum import Enum
from typing import Awaitable, Callable, List

from pydantic import BaseModel

from .chat.pending import PendingActionQueue
from .errors import (
    AlreadyInProgressError,
    ExternalCollaboratorError,
    NothingToRegenerateError,
)
from .ingestion.models import Finding, Severity
from .session.edit_session import EditSession

logger = logging.getLogger("isoguard.regeneration")


class RegenerationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"


class RegenerationResult(BaseModel):
    annotated: str
    corrected: str
    findings: List[Finding]

    def summary(self) -> dict:
        counts = {sev.value: 0 for sev in Severity}
        for f in self.findings:
            counts[f.severity.value] += 1
        return {"total": len(self.findings), **counts}


async def call_external(operation: str, call: Callable[[], Awaitable]):
    """Await a provider call, classifying any failure as ExternalCollaboratorError."""
    try:
        return await call()
    except ExternalCollaboratorError:
        raise
    except Exception as e:
        raise ExternalCollaboratorError(operation, str(e), e) from e


class RegenerationCoordinator:
    def __init__(self, session: EditSession, queue: PendingActionQueue, analyst):
        self.session = session
        self.queue = queue
        self.analyst = analyst
        self.state = RegenerationState.IDLE

    @property
    def in_flight(self) -> bool:
        return self.state is RegenerationState.GENERATING

    async def regenerate(self, image: str) -> RegenerationResult:
        # Guard and snapshot before the first await so no other task can interleave
        if self.in_flight:
            raise AlreadyInProgressError("A regeneration is already in progress.")
        if not self.session.dirty:
            raise NothingToRegenerateError("There are no unsaved changes to regenerate.")
        snapshot = self.session.current_findings()
        if not snapshot:
            raise NothingToRegenerateError(
                "No findings to regenerate with. Add a finding or discard the changes."
            )

        self.state = RegenerationState.GENERATING
        logger.info("Regenerating drawings with %d finding(s)", len(snapshot))
        try:
            annotated = await call_external(
                "annotated drawing generation",
                lambda: self.analyst.generate_annotated_artifact(image, snapshot),
            )
            corrected = await call_external(
                "corrected drawing generation",
                lambda: self.analyst.generate_corrected_artifact(image, snapshot),
            )
        except ExternalCollaboratorError as e:
            logger.warning("Regeneration failed, edits kept: %s", e)
            raise
        finally:
            self.state = RegenerationState.IDLE

        self.session.commit(snapshot)
        # Proposals were made against the old baseline
        dropped = len(self.queue)
        self.queue.clear()
        logger.info("Regeneration committed; %d pending proposal(s) invalidated", dropped)
        return RegenerationResult(annotated=annotated, corrected=corrected, findings=snapshot)
