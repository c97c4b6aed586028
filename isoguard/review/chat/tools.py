"""
Chat function calling

The chat model can propose changes to the issue list through four tools.
A tool call arrives here as plain data ({name, args}) and is turned into a
PendingAction plus the confirmation text shown to the engineer. Nothing in
this module mutates the edit session.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from ..errors import ExternalCollaboratorError
from ..ingestion.models import Finding, PendingAction, Provenance, normalize_keys
from ..session.edit_session import EditSession

CHAT_DETECTION_REASON = "User-reported via chat"

_FINDING_PROPERTIES = {
    "severity": {"type": "string", "enum": ["Critical", "Warning", "Info"]},
    "description": {"type": "string", "description": "What is wrong in the drawing"},
    "recommendation": {"type": "string", "description": "How to fix it"},
    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    "affected_references": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Equipment tags or line numbers from the drawing",
    },
    "location": {"type": "string"},
    "detection_reason": {"type": "string"},
}

TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "add_error_node",
            "description": "Propose adding a new design issue to the list. The engineer must confirm it.",
            "parameters": {
                "type": "object",
                "properties": _FINDING_PROPERTIES,
                "required": ["description", "recommendation"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "edit_error_node",
            "description": "Propose changes to an existing design issue, identified by its id.",
            "parameters": {
                "type": "object",
                "properties": {
                    "finding_id": {"type": "string"},
                    "updates": {"type": "object", "properties": _FINDING_PROPERTIES},
                },
                "required": ["finding_id", "updates"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "delete_error_node",
            "description": "Propose removing an existing design issue, identified by its id.",
            "parameters": {
                "type": "object",
                "properties": {"finding_id": {"type": "string"}},
                "required": ["finding_id"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "bulk_add_errors",
            "description": "Propose adding several design issues at once.",
            "parameters": {
                "type": "object",
                "properties": {
                    "errors": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": _FINDING_PROPERTIES,
                            "required": ["description", "recommendation"],
                        },
                    }
                },
                "required": ["errors"],
            },
        },
    },
]

_EDITABLE = {
    "severity",
    "description",
    "recommendation",
    "confidence",
    "affected_references",
    "location",
    "detection_reason",
}


class Interpretation(BaseModel):
    """Outcome of one tool call: a proposal to confirm, or just a reply."""
    action: Optional[PendingAction] = None
    message: str


def _references(value: Any) -> List[str]:
    # Models sometimes send a single tag instead of a list
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _proposed_finding(data: Dict[str, Any], new_id: Callable[[str], str]) -> Finding:
    data = normalize_keys(data)
    return Finding(
        id=new_id("finding"),
        severity=data.get("severity") or "Warning",
        description=data.get("description") or "",
        recommendation=data.get("recommendation") or "",
        confidence=data.get("confidence") or 0.9,
        affected_references=_references(data.get("affected_references")),
        location=data.get("location") or "",
        detection_reason=data.get("detection_reason") or CHAT_DETECTION_REASON,
        provenance=Provenance(created_by="ai", is_new=True),
    )


def _issue_list(findings: List[Finding]) -> str:
    if not findings:
        return "(no issues recorded)"
    return "\n".join(f"{i}. [{f.id}] {f.description}" for i, f in enumerate(findings, 1))


def format_confirmation(action: PendingAction, existing: Optional[Finding] = None) -> str:
    if action.kind == "add":
        f = action.payload[0]
        refs = ", ".join(f.affected_references) or "None"
        return (
            f"I'd like to add this issue:\n\n**{f.severity.value}**: {f.description}\n\n"
            f"**Fix**: {f.recommendation}\n\n**Location**: {f.location or 'Not specified'}\n\n"
            f"**Components**: {refs}\n\nDoes this look correct?"
        )
    if action.kind == "edit":
        f = action.payload[0]
        before = existing.description if existing else "(unknown)"
        return (
            f"I'd like to update this issue:\n\n**Before**: {before}\n\n"
            f"**After**: {f.description}\n\n**New fix**: {f.recommendation}\n\nConfirm these changes?"
        )
    if action.kind == "delete":
        f = action.payload[0]
        return f"I'd like to remove this issue:\n\n**{f.severity.value}**: {f.description}\n\nConfirm deletion?"
    if action.kind == "bulk-add":
        lines = "\n".join(
            f"{i}. **{f.severity.value}**: {f.description}" for i, f in enumerate(action.payload, 1)
        )
        return f"I'd like to add {len(action.payload)} issues:\n\n{lines}\n\nConfirm all?"
    return "Confirm this action?"


def interpret_function_call(
    name: str,
    args: Optional[Dict[str, Any]],
    session: EditSession,
    user_prompt: str,
    now: datetime,
    new_id: Callable[[str], str],
) -> Interpretation:
    """Map a chat tool call onto one of the four pending-action kinds.

    Arguments the model got wrong (a string where an object belongs, a null
    description) are reported as ExternalCollaboratorError.
    """
    try:
        return _interpret(name, normalize_keys(args), session, user_prompt, now, new_id)
    except (ValidationError, TypeError, AttributeError, ValueError) as e:
        raise ExternalCollaboratorError("chat", f"malformed {name} call: {e}", e) from e


def _interpret(
    name: str,
    args: Dict[str, Any],
    session: EditSession,
    user_prompt: str,
    now: datetime,
    new_id: Callable[[str], str],
) -> Interpretation:
    def action(kind: str, payload: List[Finding]) -> PendingAction:
        return PendingAction(
            id=new_id("action"),
            kind=kind,
            payload=payload,
            source_prompt=user_prompt,
            created_at=now,
        )

    if name == "add_error_node":
        pending = action("add", [_proposed_finding(args, new_id)])
        return Interpretation(action=pending, message=format_confirmation(pending))

    if name == "bulk_add_errors":
        items = args.get("errors") or []
        if not items:
            return Interpretation(message="I didn't find any issues to add. Could you describe them again?")
        pending = action("bulk-add", [_proposed_finding(item, new_id) for item in items])
        return Interpretation(action=pending, message=format_confirmation(pending))

    if name == "edit_error_node":
        existing = session.find(str(args.get("finding_id", "")))
        if existing is None:
            return Interpretation(
                message=f"I couldn't find that issue. Current issues:\n{_issue_list(session.current_findings())}"
            )
        updates = {
            k: v for k, v in normalize_keys(args.get("updates")).items() if k in _EDITABLE
        }
        if "affected_references" in updates:
            updates["affected_references"] = _references(updates["affected_references"])
        merged = Finding.model_validate({**existing.model_dump(), **updates})
        pending = action("edit", [merged])
        return Interpretation(action=pending, message=format_confirmation(pending, existing))

    if name == "delete_error_node":
        existing = session.find(str(args.get("finding_id", "")))
        if existing is None:
            return Interpretation(message="I couldn't find that issue to delete.")
        pending = action("delete", [existing])
        return Interpretation(action=pending, message=format_confirmation(pending))

    return Interpretation(
        message="I tried to process that request but encountered an issue. Could you rephrase?"
    )
