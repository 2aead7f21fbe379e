# tests/test_retrieval.py
import pytest

from services.beliefcore.fingerprint import FingerprintDimensionError, fingerprint, similarity
from services.beliefcore.models import BeliefChanges, SearchOptions
from services.beliefcore.retrieval import (
    KEYWORD_ONLY_SCORE,
    build_match_expression,
    keyword_rank_score,
)
from services.shared.db import exec_sql


def test_build_match_expression_quotes_tokens():
    assert build_match_expression("async/await") == '"async" "await"'
    assert build_match_expression('Say "hi"') == '"say" "hi"'
    assert build_match_expression("  !!  ") == ""


def test_keyword_rank_score():
    assert keyword_rank_score(0) == pytest.approx(1.0)
    assert keyword_rank_score(3) == pytest.approx(0.7)
    assert keyword_rank_score(10) == pytest.approx(0.0)


def test_keyword_search_matches_text_and_tags(retrieval, make_belief):
    by_text = make_belief("migrations are managed with alembic")
    by_tag = make_belief("schema changes go through review", tags=["alembic"])
    make_belief("unrelated belief")

    ids = {b.id for b in retrieval.search_keyword("alembic")}
    assert ids == {by_text.id, by_tag.id}


def test_keyword_search_handles_punctuation(retrieval, make_belief):
    b = make_belief("prefers async/await")
    assert [x.id for x in retrieval.search_keyword("async/await")] == [b.id]


def test_keyword_search_empty_query(retrieval, make_belief):
    make_belief("anything")
    assert retrieval.search_keyword("???") == []


def test_keyword_search_respects_filters(repo, retrieval, make_belief):
    keep = make_belief("docker compose for local dev", confidence=0.9)
    make_belief("docker in production", domain="decision", confidence=0.9)
    make_belief("docker for tests", confidence=0.4)
    gone = make_belief("docker swarm", confidence=0.9)
    repo.invalidate(gone.id, "dropped swarm")

    got = retrieval.search_keyword("docker", SearchOptions(domain="code_pattern", min_confidence=0.5))
    assert [b.id for b in got] == [keep.id]


def test_keyword_search_limit(retrieval, make_belief):
    for i in range(5):
        make_belief(f"pytest rule {i}")
    assert len(retrieval.search_keyword("pytest", SearchOptions(limit=3))) == 3


def test_keyword_search_stays_in_sync_after_update(repo, retrieval, make_belief):
    b = make_belief("uses flake8")
    repo.update(b.id, BeliefChanges(text="uses ruff"))

    assert retrieval.search_keyword("flake8") == []
    assert [x.id for x in retrieval.search_keyword("ruff")] == [b.id]


def test_semantic_search_ranks_by_stored_fingerprint(retrieval, make_belief):
    query_fp = fingerprint("async await")
    b1 = make_belief("prefers async/await", fingerprint=query_fp)
    b2 = make_belief("uses callbacks", fingerprint=[-x for x in query_fp])

    results = retrieval.search_semantic("async await")
    assert [r.belief.id for r in results] == [b1.id, b2.id]
    assert all(r.match_type == "semantic" for r in results)
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(-1.0)


def test_semantic_search_text_derived_scores(retrieval, make_belief):
    # the character-ngram projection has no notion of meaning
    b1 = make_belief("prefers async/await")
    b2 = make_belief("uses callbacks")

    scores = {r.belief.id: r.score for r in retrieval.search_semantic("async await")}
    assert scores[b1.id] == pytest.approx(0.03851260185310631, abs=1e-9)
    assert scores[b2.id] == pytest.approx(0.18743084247299135, abs=1e-9)


def test_semantic_search_with_mismatched_row_raises(repo, retrieval, make_belief):
    b = make_belief("legacy row")
    exec_sql(repo.engine, "UPDATE beliefs SET fingerprint = :fp WHERE id = :id", fp="[1.0,0.0,0.0]", id=b.id)

    with pytest.raises(FingerprintDimensionError):
        retrieval.search_semantic("legacy")


def test_semantic_search_scores_are_cosine(retrieval, make_belief):
    b = make_belief("tabs for indentation")
    [hit] = retrieval.search_semantic("indentation")
    assert hit.belief.id == b.id
    assert hit.score == pytest.approx(similarity(fingerprint("indentation"), b.fingerprint))


def test_semantic_search_skips_missing_fingerprints_and_invalidated(repo, retrieval, make_belief):
    keep = make_belief("keeps a fingerprint")
    bare = make_belief("lost its fingerprint")
    repo.update(bare.id, BeliefChanges(fingerprint=None))
    gone = make_belief("invalidated")
    repo.invalidate(gone.id, "obsolete")

    assert [r.belief.id for r in retrieval.search_semantic("fingerprint")] == [keep.id]


def test_semantic_search_default_limit(retrieval, make_belief):
    for i in range(12):
        make_belief(f"belief number {i}")
    assert len(retrieval.search_semantic("belief")) == 10
    assert len(retrieval.search_semantic("belief", SearchOptions(limit=4))) == 4


def test_hybrid_averages_semantic_and_keyword_scores(retrieval, make_belief):
    b = make_belief("database migrations use alembic")
    make_belief("prefers small pull requests")

    results = retrieval.search_hybrid("alembic")
    top = results[0]
    assert top.belief.id == b.id
    assert top.match_type == "hybrid"
    expected = (similarity(fingerprint("alembic"), b.fingerprint) + 1.0) / 2
    assert top.score == pytest.approx(expected)


def test_hybrid_keyword_only_hits_score_half(repo, retrieval, make_belief):
    b = make_belief("deploys with terraform")
    repo.update(b.id, BeliefChanges(fingerprint=None))

    results = retrieval.search_hybrid("terraform")
    [hit] = [r for r in results if r.belief.id == b.id]
    assert hit.match_type == "keyword"
    assert hit.score == KEYWORD_ONLY_SCORE


def test_hybrid_semantic_only_hits(retrieval, make_belief):
    b = make_belief("prefers composition over inheritance")
    results = retrieval.search_hybrid("zzz unrelated words")
    [hit] = [r for r in results if r.belief.id == b.id]
    assert hit.match_type == "semantic"


def test_hybrid_no_duplicates_and_respects_limit(retrieval, make_belief):
    for i in range(15):
        make_belief(f"logging convention {i}", tags=["logging"])
    for i in range(5):
        make_belief(f"unrelated habit {i}")

    results = retrieval.search_hybrid("logging convention", SearchOptions(limit=7))
    ids = [r.belief.id for r in results]
    assert len(ids) == len(set(ids))
    assert len(results) <= 7
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)


def test_hybrid_empty_store(retrieval):
    assert retrieval.search_hybrid("anything") == []
