"""
Review workflow

One drawing under review: the uploaded image, the edit session seeded from
the provider's findings, the chat transcript with its pending proposals and
the generated drawings. This is the surface the HTTP layer (or any other
caller) drives; it owns no global state, so several reviews can coexist.

Pipeline:
1. Recognition -> components seeded (shown before detection finishes)
2. Detection   -> findings seeded; a failure here rolls components back
3. Annotated drawing (only with findings; failure does not block the run)
4. Corrected drawing (failure fails the run; findings stay seeded)
5. Chat initialised with the analysis context
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from .chat.pending import PendingActionQueue
from .chat.reconciler import ActionReconciler
from .chat.tools import format_confirmation, interpret_function_call
from .errors import (
    AlreadyInProgressError,
    ExternalCollaboratorError,
    InvalidStateError,
    ReviewError,
)
from .ingestion.models import (
    ChatMessage,
    Component,
    Finding,
    LedgerEntry,
    PendingAction,
    Provenance,
    normalize_keys,
)
from .regeneration import RegenerationCoordinator, RegenerationResult, call_external
from .session.clock import IdFactory, SystemClock
from .session.edit_session import EditSession

logger = logging.getLogger("isoguard.workflow")

DENY_FOLLOW_UP = "No problem! Let me know if you'd like to make any adjustments."
CHAT_ERROR_REPLY = "Sorry, I encountered an error. Please try again."


class AnalysisResult(BaseModel):
    components: List[Component]
    findings: List[Finding]
    annotated: Optional[str] = None
    corrected: str


class ReviewSnapshot(BaseModel):
    review_id: str
    has_drawing: bool
    dirty: bool
    regenerating: bool
    components: List[Component]
    baseline_findings: List[Finding]
    current_findings: List[Finding]
    ledger: List[LedgerEntry]
    pending_actions: List[PendingAction]
    chat: List[ChatMessage]
    annotated_image: Optional[str] = None
    corrected_image: Optional[str] = None


def ingest_components(raw: Iterable[Dict[str, Any]]) -> List[Component]:
    return [Component.model_validate(item) for item in raw]


def ingest_findings(raw: Iterable[Dict[str, Any]]) -> List[Finding]:
    findings = []
    for item in raw:
        data = normalize_keys(item)
        # Detector ids are not trusted; the session assigns its own
        data.pop("id", None)
        data["provenance"] = Provenance(created_by="ai")
        findings.append(Finding.model_validate(data))
    return findings


def _require_text(finding: Finding) -> None:
    if not finding.description.strip() or not finding.recommendation.strip():
        raise InvalidStateError("Description and Recommendation are required fields.")


class ReviewWorkflow:
    def __init__(self, analyst, review_id: str = "", clock=None, new_id: Optional[Callable[[str], str]] = None):
        self.analyst = analyst
        self.clock = clock or SystemClock()
        self.new_id = new_id or IdFactory()
        self.review_id = review_id or self.new_id("review")

        self.session = EditSession(clock=self.clock, new_id=self.new_id)
        self.queue = PendingActionQueue()
        self.reconciler = ActionReconciler(self.session, self.queue)
        self.coordinator = RegenerationCoordinator(self.session, self.queue, analyst)

        self.original_image: Optional[str] = None
        self.annotated_image: Optional[str] = None
        self.corrected_image: Optional[str] = None
        self.chat_messages: List[ChatMessage] = []
        self.conversation = None
        self._analyzing = False
        self._chatting = False

    # --- drawing & pipeline ---

    def load_drawing(self, image: str) -> None:
        self.reset()
        self.original_image = image

    async def run_analysis(self) -> AnalysisResult:
        if not self.original_image:
            raise InvalidStateError("Upload a drawing before starting the analysis.")
        if self.session.dirty:
            raise InvalidStateError("Discard or regenerate unsaved changes before re-running the analysis.")
        if self._analyzing:
            raise AlreadyInProgressError("An analysis is already running.")

        self._analyzing = True
        try:
            return await self._run_analysis(self.original_image)
        finally:
            self._analyzing = False

    async def _run_analysis(self, image: str) -> AnalysisResult:
        logger.info("[%s] Recognizing components", self.review_id)
        raw_components = await call_external(
            "component recognition", lambda: self.analyst.recognize_components(image)
        )
        components = self._ingest("component recognition", ingest_components, raw_components)

        previous = self.session.components()
        self.seed_components(components)

        logger.info("[%s] Detecting design errors", self.review_id)
        try:
            raw_findings = await call_external(
                "error detection", lambda: self.analyst.detect_findings(image)
            )
            findings = self._ingest("error detection", ingest_findings, raw_findings)
            # Refuses if the session picked up edits while detection ran
            self.seed_findings(findings)
        except ReviewError:
            self.seed_components(previous)
            raise

        findings = self.session.current_findings()
        critical = sum(1 for f in findings if f.severity.value == "Critical")
        logger.info("[%s] Found %d issue(s) (%d critical)", self.review_id, len(findings), critical)

        annotated = None
        if findings:
            try:
                annotated = await call_external(
                    "annotated drawing generation",
                    lambda: self.analyst.generate_annotated_artifact(image, findings),
                )
            except ExternalCollaboratorError as e:
                logger.warning("[%s] Could not generate annotations: %s", self.review_id, e)
        self.annotated_image = annotated
        self.corrected_image = None

        corrected = await call_external(
            "corrected drawing generation",
            lambda: self.analyst.generate_corrected_artifact(image, findings),
        )
        self.corrected_image = corrected

        self.chat_messages = []
        self.conversation = self.analyst.start_conversation(self.session.components(), findings)
        await self._refresh_chat_context()

        return AnalysisResult(
            components=self.session.components(),
            findings=findings,
            annotated=annotated,
            corrected=corrected,
        )

    def _ingest(self, operation: str, parse, raw):
        try:
            return parse(raw or [])
        except (ValidationError, TypeError, AttributeError) as e:
            raise ExternalCollaboratorError(operation, f"malformed response: {e}", e) from e

    # --- seeding ---

    def seed_components(self, components: Iterable[Component]) -> None:
        self.session.seed_components(components)

    def seed_findings(self, findings: Iterable[Finding]) -> None:
        self.session.seed(findings)
        self.queue.clear()

    def seed_session(self, components: Iterable[Component], findings: Iterable[Finding]) -> None:
        self.seed_components(components)
        self.seed_findings(findings)

    # --- manual edits ---

    def add_finding(self, finding: Finding) -> LedgerEntry:
        _require_text(finding)
        added = finding.model_copy(deep=True)
        added.provenance = added.provenance.model_copy(update={"created_by": "user"})
        return self.session.apply_add(added, source="manual")

    def edit_finding(self, finding: Finding) -> LedgerEntry:
        _require_text(finding)
        return self.session.apply_edit(finding, source="manual")

    def delete_finding(self, finding_id: str) -> LedgerEntry:
        return self.session.apply_delete(finding_id, source="manual")

    def restore_finding(self, entry_id: str) -> LedgerEntry:
        return self.session.apply_restore(entry_id, source="manual")

    def discard_changes(self) -> None:
        self.session.discard()

    # --- chat ---

    def propose_from_chat(self, action: PendingAction, message: Optional[str] = None) -> PendingAction:
        self.queue.enqueue(action)
        self.chat_messages.append(ChatMessage(
            role="system",
            text=message or format_confirmation(action),
            action_id=action.id,
        ))
        return action

    def confirm_proposal(self, action_id: str) -> List[LedgerEntry]:
        entries = self.reconciler.confirm(action_id)
        self._mark_proposal(action_id, True)
        return entries

    def deny_proposal(self, action_id: str) -> PendingAction:
        action = self.reconciler.deny(action_id)
        self._mark_proposal(action_id, False)
        self.chat_messages.append(ChatMessage(role="model", text=DENY_FOLLOW_UP))
        return action

    def _mark_proposal(self, action_id: str, confirmed: bool) -> None:
        for msg in self.chat_messages:
            if msg.action_id == action_id:
                msg.confirmed = confirmed

    async def send_chat_message(self, text: str) -> List[ChatMessage]:
        if self.conversation is None:
            raise InvalidStateError("Run an analysis before chatting about the drawing.")
        if self._chatting:
            raise AlreadyInProgressError("Wait for the current reply before sending another message.")

        start = len(self.chat_messages)
        self.chat_messages.append(ChatMessage(role="user", text=text))
        self._chatting = True
        outcome = None
        try:
            turn = await call_external(
                "chat", lambda: self.analyst.chat_propose(self.conversation, text)
            )
            if turn.function_call is not None:
                outcome = interpret_function_call(
                    turn.function_call.name,
                    turn.function_call.args,
                    self.session,
                    text,
                    self.clock.now(),
                    self.new_id,
                )
        except ExternalCollaboratorError:
            self.chat_messages.append(ChatMessage(role="model", text=CHAT_ERROR_REPLY))
            raise
        finally:
            self._chatting = False

        if outcome is not None:
            if outcome.action is not None:
                self.propose_from_chat(outcome.action, outcome.message)
            else:
                logger.info("[%s] Chat call %s not actionable", self.review_id, turn.function_call.name)
                self.chat_messages.append(ChatMessage(role="model", text=outcome.message))

        if turn.reply_text:
            self.chat_messages.append(ChatMessage(role="model", text=turn.reply_text))

        return self.chat_messages[start:]

    async def _refresh_chat_context(self) -> None:
        if self.conversation is None:
            return
        images = {
            "original drawing": self.original_image,
            "annotated drawing": self.annotated_image,
            "corrected drawing": self.corrected_image,
        }
        try:
            await call_external("chat context", lambda: self.analyst.refresh_chat_context(
                self.conversation, self.session.components(), self.session.current_findings(), images
            ))
        except ExternalCollaboratorError as e:
            # Chat keeps working on the previous context
            logger.warning("[%s] Failed to refresh chat context: %s", self.review_id, e)

    # --- regeneration ---

    async def regenerate(self) -> RegenerationResult:
        if not self.original_image:
            raise InvalidStateError("No drawing loaded.")

        result = await self.coordinator.regenerate(self.original_image)
        self.annotated_image = result.annotated
        self.corrected_image = result.corrected
        for msg in self.chat_messages:
            if msg.action_id and msg.confirmed is None:
                msg.confirmed = False
        await self._refresh_chat_context()
        return result

    # --- lifecycle & queries ---

    def reset(self) -> None:
        if self.coordinator.in_flight or self._analyzing or self._chatting:
            raise AlreadyInProgressError("Wait for the running operation to finish before resetting the review.")
        self.session.reset()
        self.queue.clear()
        self.original_image = None
        self.annotated_image = None
        self.corrected_image = None
        self.chat_messages = []
        self.conversation = None

    def current_findings(self) -> List[Finding]:
        return self.session.current_findings()

    def baseline_findings(self) -> List[Finding]:
        return self.session.baseline_findings()

    def components(self) -> List[Component]:
        return self.session.components()

    def ledger_entries(self) -> List[LedgerEntry]:
        return self.session.ledger_entries()

    def pending_actions(self) -> List[PendingAction]:
        return self.queue.all()

    def is_dirty(self) -> bool:
        return self.session.dirty

    def snapshot(self) -> ReviewSnapshot:
        return ReviewSnapshot(
            review_id=self.review_id,
            has_drawing=self.original_image is not None,
            dirty=self.session.dirty,
            regenerating=self.coordinator.in_flight,
            components=self.components(),
            baseline_findings=self.baseline_findings(),
            current_findings=self.current_findings(),
            ledger=self.ledger_entries(),
            pending_actions=self.pending_actions(),
            chat=[m.model_copy() for m in self.chat_messages],
            annotated_image=self.annotated_image,
            corrected_image=self.corrected_image,
        )
