"""POST /proposals/execute -- run an AI proposal and return result + feedback."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from querycopilot.api.deps import ContextIn, build_context, get_engine
from querycopilot.copilot.engine import AutoExecutionEngine
from querycopilot.copilot.feedback import ResultFeedbackManager
from querycopilot.copilot.models import ExecutionProposal, ExecutionResult, Feedback, SmartSuggestion
from querycopilot.copilot.suggestions import generate_suggestions
from querycopilot.core.errors import InvalidConfiguration
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

_feedback = ResultFeedbackManager()


class ProposalRequest(ContextIn):
    proposal: ExecutionProposal
    database: str = Field("default", description="Session database, used when the proposal names none")
    retry: bool = Field(True, description="Retry transport and timeout failures")


class ProposalResponse(BaseModel):
    result: ExecutionResult
    feedback: Feedback
    feedback_text: str
    suggestions: list[SmartSuggestion]


@router.post("/execute", response_model=ProposalResponse)
def execute_proposal_endpoint(req: ProposalRequest, engine: AutoExecutionEngine = Depends(get_engine)):
    try:
        context = build_context(req.database, req)
    except InvalidConfiguration as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if req.retry:
        result = engine.execute_with_retry(req.proposal, context)
    else:
        result = engine.execute_proposal(req.proposal, context)

    feedback = _feedback.generate_feedback(result, req.proposal)
    return ProposalResponse(
        result=result,
        feedback=feedback,
        feedback_text=_feedback.format_feedback_for_ai(feedback),
        suggestions=generate_suggestions(req.proposal.query, [result]),
    )
