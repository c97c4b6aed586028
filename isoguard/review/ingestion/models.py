from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Providers and older prompt revisions use the UI field names
KEY_ALIASES = {
    "category": "severity",
    "affectedComponents": "affected_references",
    "affected_components": "affected_references",
    "affectedReferences": "affected_references",
    "detectionReason": "detection_reason",
    "errorId": "finding_id",
    "error_id": "finding_id",
    "findingId": "finding_id",
}


def normalize_keys(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {KEY_ALIASES.get(k, k): v for k, v in (data or {}).items()}


class Severity(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"


class Provenance(BaseModel):
    created_by: Literal["ai", "user"] = "ai"
    is_new: bool = False
    is_modified: bool = False
    last_modified: Optional[datetime] = None


class Finding(BaseModel):
    id: str = ""  # Empty until the session assigns one
    severity: Severity = Severity.WARNING
    description: str
    recommendation: str
    confidence: float = 0.8
    affected_references: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    detection_reason: Optional[str] = None
    provenance: Provenance = Field(default_factory=Provenance)

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value):
        # Providers answer "critical", "CRITICAL", "warn"...
        if isinstance(value, Severity):
            return value
        text = str(value or "").strip().lower()
        for sev in Severity:
            if sev.value.lower() == text:
                return sev
        if text.startswith("crit"):
            return Severity.CRITICAL
        if text.startswith("info"):
            return Severity.INFO
        return Severity.WARNING

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        try:
            conf = float(value)
        except (TypeError, ValueError):
            return 0.8
        return max(0.0, min(1.0, conf))


class Component(BaseModel):
    id: str = ""
    type: str
    name: str
    description: str = ""
    location: Optional[str] = None


class LedgerEntry(BaseModel):
    """One accepted mutation. Never modified after creation."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    type: Literal["add", "edit", "delete", "restore"]
    target: Literal["finding"] = "finding"
    target_id: str
    description: str = ""
    before_state: Optional[Finding] = None
    after_state: Optional[Finding] = None
    source: Literal["manual", "chat"] = "manual"


class PendingAction(BaseModel):
    id: str
    kind: Literal["add", "edit", "delete", "bulk-add"]
    payload: List[Finding]
    source_prompt: str = ""
    created_at: datetime


class ChatMessage(BaseModel):
    role: Literal["user", "model", "system"]
    text: str
    action_id: Optional[str] = None
    confirmed: Optional[bool] = None  # None = pending, True = confirmed, False = cancelled
