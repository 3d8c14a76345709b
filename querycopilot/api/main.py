"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from querycopilot.api.routers import history, proposals, query
from querycopilot.templating.presets import list_presets

app = FastAPI(
    title="Query Copilot",
    version="0.1.0",
    description="Time-series query templating, execution and result feedback",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query.router, prefix="/query", tags=["Query"])
app.include_router(proposals.router, prefix="/proposals", tags=["Proposals"])
app.include_router(history.router, prefix="/history", tags=["History"])


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/time-ranges", tags=["Query"])
def time_ranges():
    """Quick-range presets for the time picker."""
    return {"presets": [p.to_dict() for p in list_presets()]}


if __name__ == "__main__":
    import uvicorn

    from querycopilot.core.config import get_settings

    uvicorn.run("querycopilot.api.main:app", host="0.0.0.0", port=get_settings().api_port)
