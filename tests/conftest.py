import pytest

from services.beliefcore.models import NewBelief
from services.beliefcore.repository import BeliefRepository
from services.beliefcore.retrieval import RetrievalEngine
from services.beliefcore.tracker import ContradictionTracker
from services.shared.config import Settings
from services.shared.db import create_db_engine, init_schema


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path),
        database_url=f"sqlite:///{tmp_path / 'memory.db'}",
        confidence_decay_per_day=0.01,
        min_confidence_floor=0.3,
        contradiction_threshold=3,
        default_confidence=0.7,
        default_importance=5,
        fingerprint_dims=384,
        log_level="DEBUG",
    )


@pytest.fixture
def engine(settings):
    eng = create_db_engine(settings.resolved_database_url)
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repo(engine, settings):
    return BeliefRepository(engine, settings)


@pytest.fixture
def retrieval(repo):
    return RetrievalEngine(repo)


@pytest.fixture
def tracker(repo):
    return ContradictionTracker(repo)


@pytest.fixture
def make_belief(repo):
    def _make(text, domain="code_pattern", **kwargs):
        return repo.create(NewBelief(text=text, domain=domain, **kwargs))
    return _make
