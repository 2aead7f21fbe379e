# tests/test_api.py
import pytest
from fastapi.testclient import TestClient

from apps.adminconsole.api import app
from services.beliefcore.fingerprint import fingerprint, similarity


@pytest.fixture
def client(settings):
    app.state.settings = settings
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.state.settings = None


def _create(client, **body):
    payload = {"text": "prefers async/await", "domain": "code_pattern"}
    payload.update(body)
    res = client.post("/v1/beliefs", json=payload)
    assert res.status_code == 200, res.text
    return res.json()


def test_create_and_get(client):
    created = _create(client, confidence=0.8, tags=["style"], evidence_ids=["evt_1"])
    assert created["supporting_count"] == 1
    assert "fingerprint" not in created

    res = client.get(f"/v1/beliefs/{created['id']}", headers={"X-Trace-Id": "trc_test"})
    assert res.status_code == 200
    assert res.json()["text"] == "prefers async/await"
    assert res.json()["confidence"] == pytest.approx(0.8)


def test_get_missing_is_404(client):
    assert client.get("/v1/beliefs/blf_missing").status_code == 404


def test_create_rejects_bad_domain(client):
    res = client.post("/v1/beliefs", json={"text": "x", "domain": "astrology"})
    assert res.status_code == 422


def test_list_active(client):
    a = _create(client, text="a", importance=9)
    b = _create(client, text="b", importance=2)
    client.post(f"/v1/beliefs/{b['id']}/invalidate", json={"reason": "wrong"})

    res = client.get("/v1/beliefs")
    assert [x["id"] for x in res.json()] == [a["id"]]


def test_patch_updates_and_counts(client):
    b = _create(client)
    res = client.patch(
        f"/v1/beliefs/{b['id']}",
        json={"confidence": 0.9, "importance": 7, "add_support": True},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["confidence"] == pytest.approx(0.9)
    assert body["importance"] == 7
    assert body["supporting_count"] == 1


def test_patch_text_refreshes_search(client):
    b = _create(client, text="uses flake8")
    client.patch(f"/v1/beliefs/{b['id']}", json={"text": "uses ruff"})

    assert client.get("/v1/search", params={"q": "flake8", "mode": "keyword"}).json() == []

    hits = client.get("/v1/search", params={"q": "ruff", "mode": "semantic"}).json()
    assert hits[0]["belief"]["id"] == b["id"]
    assert hits[0]["belief"]["text"] == "uses ruff"
    assert hits[0]["score"] == pytest.approx(similarity(fingerprint("ruff"), fingerprint("uses ruff")))


def test_patch_missing_is_404(client):
    assert client.patch("/v1/beliefs/blf_missing", json={"confidence": 0.5}).status_code == 404


def test_contradictions_surface_in_review(client):
    b = _create(client, domain="user_preference", confidence=0.7)
    for _ in range(3):
        res = client.post(f"/v1/beliefs/{b['id']}/contradict")
        assert res.status_code == 200

    body = res.json()
    assert body["contradicting_count"] == 3
    assert body["flagged"] is True
    assert body["invalidated_at"] is None

    review = client.get("/v1/review").json()
    assert [x["id"] for x in review] == [b["id"]]


def test_reinforce_missing_is_404(client):
    assert client.post("/v1/beliefs/blf_missing/reinforce").status_code == 404


def test_invalidate_twice(client):
    b = _create(client)
    first = client.post(f"/v1/beliefs/{b['id']}/invalidate", json={"reason": "obsolete"}).json()
    second = client.post(f"/v1/beliefs/{b['id']}/invalidate", json={"reason": "again"}).json()
    assert first["invalidated"] is True
    assert second["invalidated"] is False

    loaded = client.get(f"/v1/beliefs/{b['id']}").json()
    assert loaded["invalidation_reason"] == "obsolete"


def test_adjust_and_decay(client):
    b = _create(client, confidence=0.7)
    res = client.post("/v1/beliefs/adjust", json={"ids": [b["id"]], "delta": -5.0})
    assert res.json() == {"adjusted": 1}
    assert client.get(f"/v1/beliefs/{b['id']}").json()["confidence"] == pytest.approx(0.3)

    # freshly created beliefs decay by a negligible amount
    assert client.post("/v1/decay").json()["decayed"] >= 0


def test_search_modes(client):
    b1 = _create(client, text="prefers async/await")
    _create(client, text="uses callbacks")

    for mode in ("hybrid", "keyword"):
        hits = client.get("/v1/search", params={"q": "async await", "mode": mode, "limit": 5}).json()
        assert hits[0]["belief"]["id"] == b1["id"]
        assert len(hits) <= 5


def test_semantic_search_mode_uses_supplied_fingerprints(client):
    query_fp = fingerprint("async await")
    b1 = _create(client, text="prefers async/await", fingerprint=query_fp)
    b2 = _create(client, text="uses callbacks", fingerprint=[-x for x in query_fp])

    hits = client.get("/v1/search", params={"q": "async await", "mode": "semantic"}).json()
    assert [h["belief"]["id"] for h in hits] == [b1["id"], b2["id"]]
    assert hits[0]["score"] == pytest.approx(1.0)
    assert all(h["match_type"] == "semantic" for h in hits)


def test_create_with_wrong_length_fingerprint_is_422(client):
    res = client.post(
        "/v1/beliefs",
        json={"text": "short vector", "domain": "code_pattern", "fingerprint": [1.0, 0.0, 0.0]},
    )
    assert res.status_code == 422
    assert "3 dimensions" in res.json()["detail"]
    assert client.get("/v1/status").json()["beliefs_total"] == 0


def test_status(client):
    _create(client, domain="workflow", confidence=0.6)
    _create(client, domain="workflow", confidence=0.8)
    gone = _create(client, domain="decision")
    client.post(f"/v1/beliefs/{gone['id']}/invalidate", json={"reason": "reverted"})

    body = client.get("/v1/status").json()
    assert body["beliefs_total"] == 3
    assert body["beliefs_active"] == 2
    assert body["domains"]["workflow"]["count"] == 2
    assert body["domains"]["workflow"]["avg_confidence"] == pytest.approx(0.7)
    assert "decision" not in body["domains"]
