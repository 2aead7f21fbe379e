import logging
import re
from typing import Dict, List, Optional

from services.beliefcore.fingerprint import fingerprint, similarity
from services.beliefcore.models import Belief, BeliefSearchResult, SearchOptions
from services.beliefcore.repository import BeliefRepository

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10

# Keyword-only hits in a hybrid search are capped at this score.
KEYWORD_ONLY_SCORE = 0.5

_TOKEN = re.compile(r"\w+", re.UNICODE)


def build_match_expression(query: str) -> str:
    """
    Raw user text -> FTS5 query. Every token is quoted (punctuation such as
    "async/await" would otherwise be FTS syntax); tokens are implicitly ANDed.
    """
    tokens = _TOKEN.findall(query.lower())
    return " ".join('"' + t.replace('"', '""') + '"' for t in tokens)


def keyword_rank_score(position: int) -> float:
    return 1.0 - position * 0.1


class RetrievalEngine:
    """Read-only keyword, semantic and hybrid search over a BeliefRepository."""

    def __init__(self, repository: BeliefRepository):
        self.repository = repository

    @property
    def dims(self) -> int:
        return self.repository.settings.fingerprint_dims

    def search_keyword(self, query: str, options: Optional[SearchOptions] = None) -> List[Belief]:
        options = options or SearchOptions()
        match = build_match_expression(query)
        if not match:
            return []
        return self.repository.full_text_match(match, options)

    def search_semantic(self, query: str, options: Optional[SearchOptions] = None) -> List[BeliefSearchResult]:
        options = options or SearchOptions()
        query_fp = fingerprint(query, self.dims)

        candidates = self.repository.get_active(options.model_copy(update={"limit": None}))
        scored = [
            BeliefSearchResult(belief=b, score=similarity(query_fp, b.fingerprint), match_type="semantic")
            for b in candidates
            if b.fingerprint is not None
        ]
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[: options.limit or DEFAULT_LIMIT]

    def search_hybrid(self, query: str, options: Optional[SearchOptions] = None) -> List[BeliefSearchResult]:
        """
        Merge keyword and semantic rankings:
          - both lists fetched at twice the requested limit
          - the i-th keyword hit is worth 1 - 0.1*i
          - semantic hits also found by keyword average the two scores ("hybrid")
          - remaining keyword-only hits get a flat KEYWORD_ONLY_SCORE
        """
        options = options or SearchOptions()
        limit = options.limit or DEFAULT_LIMIT
        wide = options.model_copy(update={"limit": limit * 2})

        keyword_hits = self.search_keyword(query, wide)
        semantic_hits = self.search_semantic(query, wide)

        keyword_scores: Dict[str, float] = {}
        for i, belief in enumerate(keyword_hits):
            keyword_scores.setdefault(belief.id, keyword_rank_score(i))

        seen = set()
        combined: List[BeliefSearchResult] = []

        for hit in semantic_hits:
            if hit.belief.id in seen:
                continue
            seen.add(hit.belief.id)

            kw_score = keyword_scores.get(hit.belief.id)
            if kw_score is None:
                combined.append(hit)
            else:
                combined.append(
                    BeliefSearchResult(
                        belief=hit.belief,
                        score=(hit.score + kw_score) / 2,
                        match_type="hybrid",
                    )
                )

        for belief in keyword_hits:
            if belief.id in seen:
                continue
            seen.add(belief.id)
            combined.append(BeliefSearchResult(belief=belief, score=KEYWORD_ONLY_SCORE, match_type="keyword"))

        combined.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            "Hybrid search %r: %d keyword, %d semantic, %d merged",
            query, len(keyword_hits), len(semantic_hits), len(combined),
        )
        return combined[:limit]
