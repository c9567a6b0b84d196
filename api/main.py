import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from api.db import initialize_database
from api.schemas import (
    CalculateCorrelationsIn,
    CalculateCorrelationsOut,
    CorrelationOut,
    DashboardOut,
    InsightSummaryOut,
    MLAnalysisRunIn,
    MLAnalysisRunOut,
    MLResultsOut,
)
from ml.correlations import (
    MIN_CONFIDENCE,
    calculate_correlations,
    get_beneficial_items,
    get_stored_correlations,
    get_top_triggers_for_outcome,
)
from ml.feature_importance import get_cached_ml_results, run_ml_analysis
from ml.insights import get_analysis_dashboard, get_correlation_insights
from ml.trends import generate_symptom_trends


@asynccontextmanager
async def _lifespan(app: FastAPI):
    _ = app
    initialize_database()
    yield


app = FastAPI(
    title="Exposure Correlation API",
    version="0.1.0",
    lifespan=_lifespan,
)
logger = logging.getLogger(__name__)


def _cors_allow_origins() -> list[str]:
    configured = os.getenv("CORS_ALLOW_ORIGINS", "")
    if configured.strip():
        return [origin.strip().rstrip("/") for origin in configured.split(",") if origin.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# the auth layer in front of this service injects X-User-Id
def _resolve_request_user_id(
    *,
    explicit_user_id: Optional[int],
    header_user_id: Optional[int],
) -> int:
    if header_user_id is not None:
        if explicit_user_id is not None and int(explicit_user_id) != int(header_user_id):
            raise HTTPException(status_code=403, detail="user_id does not match authenticated user")
        return int(header_user_id)
    if explicit_user_id is not None:
        return int(explicit_user_id)
    raise HTTPException(status_code=401, detail="Authentication required")


def _records_out(records: list[Any]) -> list[dict[str, Any]]:
    return [record.to_dict() for record in records]


# recompute and persist the user's correlation set
@app.post("/analysis/calculate", response_model=CalculateCorrelationsOut)
def calculate_user_correlations(
    payload: CalculateCorrelationsIn,
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=payload.user_id, header_user_id=x_user_id)
    records = calculate_correlations(
        user_id,
        days_back=payload.days_back,
        time_window_hours=payload.time_window_hours,
        min_confidence=payload.min_confidence,
    )
    return {
        "status": "ok",
        "user_id": user_id,
        "count": len(records),
        "correlations": _records_out(records),
    }


@app.get("/analysis/correlations", response_model=list[CorrelationOut])
def list_user_correlations(
    user_id: Optional[int] = None,
    min_confidence: float = Query(default=MIN_CONFIDENCE, ge=0.0, le=1.0),
    limit: int = Query(default=50, ge=1, le=500),
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    return _records_out(get_stored_correlations(user_id, min_confidence=min_confidence, limit=limit))


@app.get("/analysis/triggers/{outcome_id}", response_model=list[CorrelationOut])
def list_outcome_triggers(
    outcome_id: str,
    user_id: Optional[int] = None,
    limit: int = Query(default=10, ge=1, le=100),
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    return _records_out(get_top_triggers_for_outcome(user_id, outcome_id, limit=limit))


@app.get("/analysis/beneficial", response_model=list[CorrelationOut])
def list_beneficial(
    user_id: Optional[int] = None,
    limit: int = Query(default=10, ge=1, le=100),
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    return _records_out(get_beneficial_items(user_id, limit=limit))


@app.get("/analysis/trends", response_model=list[dict[str, Any]])
def list_trends(
    user_id: Optional[int] = None,
    days: int = Query(default=30, ge=1, le=365),
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    return generate_symptom_trends(user_id, days=days)


@app.get("/analysis/insights", response_model=InsightSummaryOut)
def get_insights(
    user_id: Optional[int] = None,
    min_confidence: float = Query(default=MIN_CONFIDENCE, ge=0.0, le=1.0),
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    return get_correlation_insights(user_id, min_confidence=min_confidence).to_dict()


@app.get("/analysis/dashboard", response_model=DashboardOut)
def get_dashboard(
    user_id: Optional[int] = None,
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    return get_analysis_dashboard(user_id)


@app.post("/ml-analysis/run", response_model=MLAnalysisRunOut)
def run_user_ml_analysis(
    payload: MLAnalysisRunIn,
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=payload.user_id, header_user_id=x_user_id)
    return run_ml_analysis(user_id, days_back=payload.days_back).to_dict()


@app.get("/ml-analysis/results", response_model=MLResultsOut)
def get_ml_results(
    user_id: Optional[int] = None,
    x_user_id: Optional[int] = Header(default=None),
):
    user_id = _resolve_request_user_id(explicit_user_id=user_id, header_user_id=x_user_id)
    run = get_cached_ml_results(user_id)
    if run is None:
        return {"status": "empty", "run": None}
    return {"status": "ok", "run": run.to_dict()}
