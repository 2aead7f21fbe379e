import logging
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from apps.adminconsole.schemas import (
    AdjustRequest,
    BeliefCreate,
    BeliefPatch,
    BeliefView,
    InvalidateRequest,
    SearchHit,
)
from services.beliefcore.fingerprint import FingerprintDimensionError, fingerprint
from services.beliefcore.models import BeliefChanges, BeliefDomain, NewBelief, SearchOptions
from services.beliefcore.repository import BeliefRepository, now_utc
from services.beliefcore.retrieval import RetrievalEngine, keyword_rank_score
from services.beliefcore.tracker import ContradictionTracker
from services.shared.config import load_settings
from services.shared.db import create_db_engine, init_schema
from services.shared.ids import new_id
from services.shared.logging import TraceAdapter, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Store handle lives exactly as long as the app. Tests may preset app.state.settings.
    cfg = getattr(app.state, "settings", None) or load_settings()
    setup_logging(cfg.log_level)
    engine = create_db_engine(cfg.resolved_database_url)
    init_schema(engine)

    repository = BeliefRepository(engine, cfg)
    app.state.repository = repository
    app.state.retrieval = RetrievalEngine(repository)
    app.state.tracker = ContradictionTracker(repository)
    try:
        yield
    finally:
        engine.dispose()


app = FastAPI(title="memreason AdminConsole", version="0.1.0", lifespan=lifespan)


@app.exception_handler(FingerprintDimensionError)
async def fingerprint_dimension_error(request: Request, exc: FingerprintDimensionError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def get_repository(request: Request) -> BeliefRepository:
    return request.app.state.repository


def get_retrieval(request: Request) -> RetrievalEngine:
    return request.app.state.retrieval


def get_tracker(request: Request) -> ContradictionTracker:
    return request.app.state.tracker


def get_log(x_trace_id: str | None = Header(default=None)) -> TraceAdapter:
    return TraceAdapter(logging.getLogger("adminconsole"), {"trace_id": x_trace_id or new_id("trc")})


def _view(belief, tracker: ContradictionTracker) -> BeliefView:
    return BeliefView.of(belief, flagged=tracker.is_flagged(belief))


@app.post("/v1/beliefs", response_model=BeliefView)
def create_belief(
    body: BeliefCreate,
    repo: BeliefRepository = Depends(get_repository),
    tracker: ContradictionTracker = Depends(get_tracker),
    log: TraceAdapter = Depends(get_log),
):
    belief = repo.create(NewBelief(**body.model_dump()))
    log.info("created belief %s", belief.id)
    return _view(belief, tracker)


@app.get("/v1/beliefs", response_model=List[BeliefView])
def list_beliefs(
    domain: Optional[BeliefDomain] = None,
    min_confidence: Optional[float] = Query(None, ge=0.0, le=1.0),
    limit: int = Query(20, ge=1),
    repo: BeliefRepository = Depends(get_repository),
    tracker: ContradictionTracker = Depends(get_tracker),
):
    beliefs = repo.get_active(SearchOptions(domain=domain, min_confidence=min_confidence, limit=limit))
    return [_view(b, tracker) for b in beliefs]


@app.post("/v1/beliefs/adjust")
def adjust_beliefs(
    body: AdjustRequest,
    repo: BeliefRepository = Depends(get_repository),
    log: TraceAdapter = Depends(get_log),
):
    changed = repo.adjust_confidence(body.ids, body.delta)
    log.info("adjusted %d belief(s) by %s", changed, body.delta)
    return {"adjusted": changed}


@app.get("/v1/beliefs/{belief_id}", response_model=BeliefView)
def get_belief(
    belief_id: str,
    repo: BeliefRepository = Depends(get_repository),
    tracker: ContradictionTracker = Depends(get_tracker),
):
    belief = repo.get_by_id(belief_id)
    if belief is None:
        raise HTTPException(status_code=404, detail=f"Belief not found: {belief_id}")
    return _view(belief, tracker)


@app.patch("/v1/beliefs/{belief_id}", response_model=BeliefView)
def update_belief(
    belief_id: str,
    body: BeliefPatch,
    repo: BeliefRepository = Depends(get_repository),
    tracker: ContradictionTracker = Depends(get_tracker),
    log: TraceAdapter = Depends(get_log),
):
    if repo.get_by_id(belief_id) is None:
        raise HTTPException(status_code=404, detail=f"Belief not found: {belief_id}")

    if body.add_support:
        tracker.reinforce(belief_id)
    if body.add_contradict:
        tracker.contradict(belief_id)

    fields = body.model_dump(include={"text", "confidence", "importance", "tags"}, exclude_unset=True)
    fields = {k: v for k, v in fields.items() if v is not None}
    if "text" in fields:
        fields["fingerprint"] = fingerprint(fields["text"], repo.settings.fingerprint_dims)
    fields["last_evaluated"] = now_utc()

    updated = repo.update(belief_id, BeliefChanges(**fields))
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Belief not found: {belief_id}")

    log.info("updated belief %s", belief_id)
    return _view(updated, tracker)


@app.post("/v1/beliefs/{belief_id}/invalidate")
def invalidate_belief(
    belief_id: str,
    body: InvalidateRequest,
    repo: BeliefRepository = Depends(get_repository),
    log: TraceAdapter = Depends(get_log),
):
    ok = repo.invalidate(belief_id, body.reason)
    if not ok:
        log.info("belief %s not found or already invalidated", belief_id)
    return {"belief_id": belief_id, "invalidated": ok}


@app.post("/v1/beliefs/{belief_id}/reinforce", response_model=BeliefView)
def reinforce_belief(
    belief_id: str,
    repo: BeliefRepository = Depends(get_repository),
    tracker: ContradictionTracker = Depends(get_tracker),
):
    if not tracker.reinforce(belief_id):
        raise HTTPException(status_code=404, detail=f"Belief not found: {belief_id}")
    return _view(repo.get_by_id(belief_id), tracker)


@app.post("/v1/beliefs/{belief_id}/contradict", response_model=BeliefView)
def contradict_belief(
    belief_id: str,
    repo: BeliefRepository = Depends(get_repository),
    tracker: ContradictionTracker = Depends(get_tracker),
):
    if not tracker.contradict(belief_id):
        raise HTTPException(status_code=404, detail=f"Belief not found: {belief_id}")
    return _view(repo.get_by_id(belief_id), tracker)


@app.post("/v1/decay")
def decay(
    repo: BeliefRepository = Depends(get_repository),
    log: TraceAdapter = Depends(get_log),
):
    changed = repo.apply_decay()
    log.info("decay sweep touched %d belief(s)", changed)
    return {"decayed": changed}


@app.get("/v1/search", response_model=List[SearchHit])
def search(
    q: str,
    mode: Literal["hybrid", "keyword", "semantic"] = "hybrid",
    limit: int = Query(10, ge=1),
    domain: Optional[BeliefDomain] = None,
    min_confidence: Optional[float] = Query(None, ge=0.0, le=1.0),
    retrieval: RetrievalEngine = Depends(get_retrieval),
    tracker: ContradictionTracker = Depends(get_tracker),
):
    options = SearchOptions(limit=limit, domain=domain, min_confidence=min_confidence)

    if mode == "keyword":
        return [
            SearchHit(belief=_view(b, tracker), score=keyword_rank_score(i), match_type="keyword")
            for i, b in enumerate(retrieval.search_keyword(q, options))
        ]

    hits = retrieval.search_semantic(q, options) if mode == "semantic" else retrieval.search_hybrid(q, options)
    return [SearchHit(belief=_view(h.belief, tracker), score=h.score, match_type=h.match_type) for h in hits]


@app.get("/v1/status")
def status(repo: BeliefRepository = Depends(get_repository)):
    stats = repo.get_stats_per_domain()
    return {
        "beliefs_total": repo.count(SearchOptions(active_only=False)),
        "beliefs_active": repo.count(),
        "domains": {d.value: s.model_dump() for d, s in stats.items()},
    }


@app.get("/v1/review", response_model=List[BeliefView])
def review(
    domain: Optional[BeliefDomain] = None,
    tracker: ContradictionTracker = Depends(get_tracker),
):
    return [_view(b, tracker) for b in tracker.flagged(domain)]
