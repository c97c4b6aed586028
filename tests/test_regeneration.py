"""Tests for the regeneration coordinator: preconditions, atomic commit, single flight."""

import asyncio

import pytest

from isoguard.review.errors import (
    AlreadyInProgressError,
    ExternalCollaboratorError,
    NothingToRegenerateError,
)
from isoguard.review.chat.tools import interpret_function_call
from isoguard.review.ingestion.models import PendingAction, Severity
from isoguard.review.workflow import ReviewWorkflow

from conftest import IMAGE, FakeAnalyst, make_finding


def test_requires_unsaved_changes(workflow):
    with pytest.raises(NothingToRegenerateError):
        asyncio.run(workflow.regenerate())


def test_rejects_empty_working_set(workflow):
    workflow.delete_finding("F1")
    workflow.delete_finding("F2")
    with pytest.raises(NothingToRegenerateError):
        asyncio.run(workflow.regenerate())
    assert workflow.is_dirty()


def test_corrected_failure_leaves_session_untouched(workflow, analyst):
    workflow.delete_finding("F2")
    findings = workflow.current_findings()
    ledger = workflow.ledger_entries()
    analyst.fail["corrected"] = True

    with pytest.raises(ExternalCollaboratorError):
        asyncio.run(workflow.regenerate())

    assert "annotated" in analyst.calls
    assert workflow.is_dirty()
    assert workflow.current_findings() == findings
    assert workflow.ledger_entries() == ledger
    assert workflow.corrected_image is None
    assert not workflow.coordinator.in_flight


def test_failure_keeps_pending_proposals(workflow, analyst):
    workflow.delete_finding("F2")
    analyst.fail["annotated"] = True
    out = interpret_function_call(
        "delete_error_node", {"finding_id": "F1"}, workflow.session, "drop it",
        workflow.clock.now(), workflow.new_id,
    )
    workflow.propose_from_chat(out.action)

    with pytest.raises(ExternalCollaboratorError):
        asyncio.run(workflow.regenerate())
    assert len(workflow.pending_actions()) == 1


def test_unclassified_provider_error_is_wrapped(workflow, analyst):
    async def boom(image, findings):
        raise RuntimeError("quota exceeded")

    analyst.generate_annotated_artifact = boom
    workflow.delete_finding("F2")

    with pytest.raises(ExternalCollaboratorError) as info:
        asyncio.run(workflow.regenerate())
    assert "quota exceeded" in str(info.value)
    assert isinstance(info.value.cause, RuntimeError)


def test_success_commits_and_clears_queue(workflow, analyst):
    workflow.delete_finding("F2")
    workflow.propose_from_chat(PendingAction(
        id="a1", kind="delete", payload=[make_finding("F1")], source_prompt="", created_at=workflow.clock.now()
    ))

    result = asyncio.run(workflow.regenerate())

    assert result.annotated.endswith("ANNOTATED")
    assert result.corrected.endswith("CORRECTED")
    assert result.summary() == {"total": 1, "Critical": 1, "Warning": 0, "Info": 0}
    assert not workflow.is_dirty()
    assert workflow.ledger_entries() == []
    assert [f.id for f in workflow.baseline_findings()] == ["F1"]
    assert workflow.pending_actions() == []
    assert workflow.chat_messages[0].confirmed is False
    assert workflow.corrected_image == result.corrected


def test_both_calls_see_the_same_snapshot(workflow, analyst):
    workflow.delete_finding("F2")
    asyncio.run(workflow.regenerate())
    assert [f.id for f in analyst.generated_with[-1]] == ["F1"]


class GatedAnalyst(FakeAnalyst):
    def __init__(self):
        super().__init__()
        self.gate = None
        self.waiting = False

    async def generate_annotated_artifact(self, image, findings):
        self.waiting = True
        await self.gate.wait()
        return await super().generate_annotated_artifact(image, findings)


def test_second_regeneration_is_rejected_while_first_runs(clock, ids):
    analyst = GatedAnalyst()
    wf = ReviewWorkflow(analyst, clock=clock, new_id=ids)
    wf.load_drawing(IMAGE)
    wf.seed_session([], [make_finding("F1", Severity.CRITICAL)])
    wf.delete_finding("F1")
    wf.add_finding(make_finding("F9"))

    async def scenario():
        analyst.gate = asyncio.Event()
        first = asyncio.create_task(wf.regenerate())
        await asyncio.sleep(0)
        assert wf.coordinator.in_flight
        with pytest.raises(AlreadyInProgressError):
            await wf.regenerate()
        analyst.gate.set()
        return await first

    result = asyncio.run(scenario())
    assert [f.id for f in result.findings] == ["F9"]
    assert not wf.coordinator.in_flight
    assert not wf.is_dirty()


def test_reset_is_refused_while_regenerating(clock, ids):
    analyst = GatedAnalyst()
    wf = ReviewWorkflow(analyst, clock=clock, new_id=ids)
    wf.load_drawing(IMAGE)
    wf.seed_session([], [make_finding("F1", Severity.CRITICAL)])
    wf.add_finding(make_finding("F9"))

    async def scenario():
        analyst.gate = asyncio.Event()
        running = asyncio.create_task(wf.regenerate())
        await asyncio.sleep(0)
        with pytest.raises(AlreadyInProgressError):
            wf.reset()
        with pytest.raises(AlreadyInProgressError):
            wf.load_drawing(IMAGE)
        analyst.gate.set()
        await running

    asyncio.run(scenario())
    assert wf.original_image == IMAGE
    assert [f.id for f in wf.baseline_findings()] == ["F1", "F9"]

    wf.reset()
    assert wf.snapshot().current_findings == []
    assert wf.corrected_image is None


def test_reset_is_refused_while_analyzing(clock, ids):
    analyst = GatedAnalyst()
    wf = ReviewWorkflow(analyst, clock=clock, new_id=ids)
    wf.load_drawing(IMAGE)

    async def scenario():
        analyst.gate = asyncio.Event()
        running = asyncio.create_task(wf.run_analysis())
        while not analyst.waiting:
            await asyncio.sleep(0)
        with pytest.raises(AlreadyInProgressError):
            wf.reset()
        analyst.gate.set()
        await running

    asyncio.run(scenario())
    assert len(wf.current_findings()) == 2
    assert wf.corrected_image.endswith("CORRECTED")
