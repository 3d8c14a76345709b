"""Query endpoints -- time-variable preview and direct execution."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from querycopilot.api.deps import ContextIn, build_context, get_executor
from querycopilot.core.errors import (
    InvalidConfiguration,
    MacroExpansionError,
    QueryCancelled,
    QueryTimeout,
    TransportError,
)
from querycopilot.core.logging import get_logger
from querycopilot.execution.executor import QueryExecutor

logger = get_logger(__name__)
router = APIRouter()


class QueryRequest(ContextIn):
    query: str = Field(..., min_length=1, description="Raw SQL, may contain $__ macros")
    database: str = Field("default", description="Logical database name")


class ExpandResponse(BaseModel):
    original_query: str
    sanitized_query: str
    final_query: str
    interpolated_variables: dict[str, str]
    errors: list[str]
    warnings: list[str]
    ok: bool


class ParseErrorOut(BaseModel):
    line_number: int
    message: str


class ExecuteResponse(BaseModel):
    final_query: str
    sanitized_query: str
    interpolated_variables: dict[str, str]
    records: list[dict]
    errors: list[ParseErrorOut]
    metadata: dict
    elapsed_ms: int


@router.post("/expand", response_model=ExpandResponse)
def expand_endpoint(req: QueryRequest, executor: QueryExecutor = Depends(get_executor)):
    """Sanitize and expand only -- nothing is sent to the backend."""
    try:
        context = build_context(req.database, req)
    except InvalidConfiguration as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    prepared = executor.prepare(req.query, context)
    return ExpandResponse(**prepared.to_dict(), ok=prepared.expansion.ok)


@router.post("/execute", response_model=ExecuteResponse)
def execute_endpoint(req: QueryRequest, executor: QueryExecutor = Depends(get_executor)):
    """Full pipeline: sanitize -> expand -> send -> parse."""
    try:
        context = build_context(req.database, req)
        run = executor.run(req.query, context)
    except InvalidConfiguration as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except MacroExpansionError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "errors": exc.errors, "final_query": exc.final_query},
        )
    except QueryTimeout as exc:
        raise HTTPException(status_code=504, detail=str(exc))
    except QueryCancelled as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except TransportError as exc:
        raise HTTPException(
            status_code=502,
            detail={"message": str(exc), "status_code": exc.status_code, "detail": exc.detail},
        )
    except Exception as exc:
        logger.exception("Query execution failed")
        raise HTTPException(status_code=500, detail=str(exc))

    return ExecuteResponse(**run.to_dict())
