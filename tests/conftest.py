"""Shared test fixtures for the review core."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from isoguard.review.errors import ExternalCollaboratorError
from isoguard.review.ingestion.models import Finding, Severity
from isoguard.review.judgment.engine import ChatConversation, ChatTurn, FunctionCall
from isoguard.review.session.edit_session import EditSession
from isoguard.review.workflow import ReviewWorkflow

IMAGE = "data:image/png;base64,iVBORw0KGgo="


class TickingClock:
    """Advances one second per reading."""

    def __init__(self) -> None:
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class SequentialIds:
    def __init__(self) -> None:
        self.counter = 0

    def __call__(self, prefix: str) -> str:
        self.counter += 1
        return f"{prefix}-{self.counter}"


class FakeAnalyst:
    """In-memory stand-in for the AI provider."""

    def __init__(
        self,
        components: Optional[List[Dict[str, Any]]] = None,
        findings: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.components = components if components is not None else [
            {"type": "valve", "name": "V-101", "description": "Gate valve on suction line"},
            {"type": "pump", "name": "P-201", "description": "Centrifugal pump"},
        ]
        self.findings = findings if findings is not None else [
            {
                "category": "Critical",
                "description": "Missing drain at low point",
                "recommendation": "Add a drain valve",
                "confidence": 0.92,
                "affectedComponents": ["L-12"],
            },
            {
                "severity": "Warning",
                "description": "Unsupported span",
                "recommendation": "Add a pipe support",
                "confidence": 0.7,
            },
        ]
        self.fail: Dict[str, bool] = {}
        self.calls: List[str] = []
        self.chat_turns: List[ChatTurn] = []
        self.generated_with: List[List[Finding]] = []

    def _maybe_fail(self, op: str) -> None:
        self.calls.append(op)
        if self.fail.get(op):
            raise ExternalCollaboratorError(op, f"{op} unavailable")

    async def recognize_components(self, image: str):
        self._maybe_fail("recognize")
        return [dict(c) for c in self.components]

    async def detect_findings(self, image: str):
        self._maybe_fail("detect")
        return [dict(f) for f in self.findings]

    async def generate_annotated_artifact(self, image: str, findings: List[Finding]) -> str:
        self._maybe_fail("annotated")
        self.generated_with.append(findings)
        return "data:image/png;base64,ANNOTATED"

    async def generate_corrected_artifact(self, image: str, findings: List[Finding]) -> str:
        self._maybe_fail("corrected")
        return "data:image/png;base64,CORRECTED"

    def start_conversation(self, components, findings) -> ChatConversation:
        return ChatConversation("test context")

    async def chat_propose(self, conversation: ChatConversation, user_text: str) -> ChatTurn:
        self._maybe_fail("chat")
        if self.chat_turns:
            return self.chat_turns.pop(0)
        return ChatTurn(reply_text="Noted.")

    async def refresh_chat_context(self, conversation, components, findings, images) -> None:
        self._maybe_fail("context")

    def queue_call(self, name: str, args: Dict[str, Any], reply: Optional[str] = None) -> None:
        self.chat_turns.append(ChatTurn(reply_text=reply, function_call=FunctionCall(name=name, args=args)))


def make_finding(fid: str, severity: Severity = Severity.WARNING, description: str = "") -> Finding:
    return Finding(
        id=fid,
        severity=severity,
        description=description or f"Issue {fid}",
        recommendation=f"Fix {fid}",
        confidence=0.8,
    )


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def session(clock, ids) -> EditSession:
    s = EditSession(clock=clock, new_id=ids)
    s.seed([
        make_finding("F1", Severity.CRITICAL),
        make_finding("F2", Severity.WARNING),
    ])
    return s


@pytest.fixture
def analyst() -> FakeAnalyst:
    return FakeAnalyst()


@pytest.fixture
def workflow(analyst, clock, ids) -> ReviewWorkflow:
    wf = ReviewWorkflow(analyst, review_id="review-test", clock=clock, new_id=ids)
    wf.load_drawing(IMAGE)
    wf.seed_session([], [
        make_finding("F1", Severity.CRITICAL),
        make_finding("F2", Severity.WARNING),
    ])
    return wf
