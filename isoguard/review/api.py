from typing import Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from PIL import UnidentifiedImageError
from pydantic import BaseModel, Field

from ..utils import normalize_drawing
from .errors import (
    AlreadyInProgressError,
    ExternalCollaboratorError,
    InvalidStateError,
    NotFoundError,
    NothingToRegenerateError,
    ReviewError,
)
from .ingestion.models import Finding, Severity
from .workflow import ReviewWorkflow

router = APIRouter(prefix="/api/v1/review", tags=["review"])


class ReviewRegistry:
    """Reviews kept in memory for the lifetime of the process."""

    def __init__(self, workflow_factory: Callable[[], ReviewWorkflow]):
        self._factory = workflow_factory
        self._reviews: Dict[str, ReviewWorkflow] = {}

    def create(self) -> ReviewWorkflow:
        review = self._factory()
        self._reviews[review.review_id] = review
        return review

    def get(self, review_id: str) -> ReviewWorkflow:
        review = self._reviews.get(review_id)
        if review is None:
            raise NotFoundError("review", review_id)
        return review

    def remove(self, review_id: str) -> None:
        self.get(review_id)
        del self._reviews[review_id]


_STATUS = {
    NotFoundError: 404,
    InvalidStateError: 409,
    AlreadyInProgressError: 409,
    NothingToRegenerateError: 422,
    ExternalCollaboratorError: 502,
}


async def review_error_handler(request: Request, exc: ReviewError) -> JSONResponse:
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 400)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ExternalCollaboratorError):
        body["operation"] = exc.operation
        body["provider_message"] = exc.provider_message
    return JSONResponse(body, status_code=status)


def get_registry(request: Request) -> ReviewRegistry:
    return request.app.state.reviews


def get_review(review_id: str, registry: ReviewRegistry = Depends(get_registry)) -> ReviewWorkflow:
    return registry.get(review_id)


class FindingIn(BaseModel):
    severity: Severity = Severity.WARNING
    description: str
    recommendation: str
    confidence: float = 0.8
    affected_references: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    detection_reason: Optional[str] = None

    def to_finding(self, finding_id: str = "") -> Finding:
        return Finding(id=finding_id, **self.model_dump())


class ChatRequest(BaseModel):
    text: str


@router.post("/reviews")
async def create_review(file: UploadFile = File(...), registry: ReviewRegistry = Depends(get_registry)):
    """Upload a drawing and open a new review for it."""
    contents = await file.read()
    try:
        image = normalize_drawing(contents)
    except (UnidentifiedImageError, OSError):
        raise HTTPException(status_code=400, detail="Upload is not a readable image.")

    review = registry.create()
    review.load_drawing(image)
    return {"review_id": review.review_id, "status": "uploaded"}


@router.get("/reviews/{review_id}")
def get_state(review: ReviewWorkflow = Depends(get_review)):
    return review.snapshot()


@router.delete("/reviews/{review_id}")
def close_review(review_id: str, registry: ReviewRegistry = Depends(get_registry)):
    registry.remove(review_id)
    return {"status": "closed"}


@router.post("/reviews/{review_id}/analyze")
async def analyze(review: ReviewWorkflow = Depends(get_review)):
    """Recognition, detection and first drawing generation in one run."""
    return await review.run_analysis()


@router.post("/reviews/{review_id}/findings")
def add_finding(body: FindingIn, review: ReviewWorkflow = Depends(get_review)):
    return review.add_finding(body.to_finding())


@router.put("/reviews/{review_id}/findings/{finding_id}")
def edit_finding(finding_id: str, body: FindingIn, review: ReviewWorkflow = Depends(get_review)):
    return review.edit_finding(body.to_finding(finding_id))


@router.delete("/reviews/{review_id}/findings/{finding_id}")
def delete_finding(finding_id: str, review: ReviewWorkflow = Depends(get_review)):
    return review.delete_finding(finding_id)


@router.post("/reviews/{review_id}/ledger/{entry_id}/restore")
def restore_finding(entry_id: str, review: ReviewWorkflow = Depends(get_review)):
    return review.restore_finding(entry_id)


@router.post("/reviews/{review_id}/chat")
async def chat(body: ChatRequest, review: ReviewWorkflow = Depends(get_review)):
    messages = await review.send_chat_message(body.text)
    return {"messages": messages, "pending_actions": review.pending_actions()}


@router.post("/reviews/{review_id}/proposals/{action_id}/confirm")
def confirm_proposal(action_id: str, review: ReviewWorkflow = Depends(get_review)):
    return {"changes": review.confirm_proposal(action_id)}


@router.post("/reviews/{review_id}/proposals/{action_id}/deny")
def deny_proposal(action_id: str, review: ReviewWorkflow = Depends(get_review)):
    review.deny_proposal(action_id)
    return {"status": "cancelled", "action_id": action_id}


@router.post("/reviews/{review_id}/regenerate")
async def regenerate(review: ReviewWorkflow = Depends(get_review)):
    result = await review.regenerate()
    return {
        "annotated_image": result.annotated,
        "corrected_image": result.corrected,
        "summary": result.summary(),
    }


@router.post("/reviews/{review_id}/discard")
def discard(review: ReviewWorkflow = Depends(get_review)):
    review.discard_changes()
    return review.snapshot()


@router.post("/reviews/{review_id}/reset")
def reset(review: ReviewWorkflow = Depends(get_review)):
    review.reset()
    return review.snapshot()
