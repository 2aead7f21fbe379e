"""
Deterministic text fingerprints for similarity search.

A bag-of-character-ngram hash projection, not a learned embedding:
  - position slot:   (code[i] * (i+1)) % dims        += 1/(i+1)
  - bigram slot:     (code[i-1] * 31 + code[i]) % dims += 0.5/(i+1)
  - word-start slot: (code[i+1] * 17 + i) % dims     += 0.3   (code[i] is a space)
then L2-normalized. Character codes are UTF-16 code units of the lower-cased text.
Collisions are expected; only determinism and the slot formulas matter.
"""
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

DEFAULT_DIMS = 384

_SPACE = 0x20


class FingerprintDimensionError(ValueError):
    pass


def _code_units(text: str) -> np.ndarray:
    return np.frombuffer(text.lower().encode("utf-16-le"), dtype="<u2").astype(np.int64)


def fingerprint(text: str, dims: int = DEFAULT_DIMS) -> List[float]:
    codes = _code_units(text)
    vec = np.zeros(dims, dtype=np.float64)
    n = len(codes)

    for i in range(n):
        code = int(codes[i])
        weight = i + 1

        vec[(code * weight) % dims] += 1.0 / weight

        if i > 0:
            prev = int(codes[i - 1])
            vec[(prev * 31 + code) % dims] += 0.5 / weight

        if code == _SPACE and i < n - 1:
            nxt = int(codes[i + 1])
            vec[(nxt * 17 + i) % dims] += 0.3

    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm

    return vec.tolist()


def fingerprint_many(texts: Iterable[str], dims: int = DEFAULT_DIMS) -> List[List[float]]:
    return [fingerprint(t, dims) for t in texts]


def similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity. Raises FingerprintDimensionError on length mismatch; 0.0 for a zero vector."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    if va.shape != vb.shape:
        raise FingerprintDimensionError(
            f"Fingerprint dimensions differ: {va.shape[0]} vs {vb.shape[0]}"
        )

    magnitude = np.linalg.norm(va) * np.linalg.norm(vb)
    if magnitude == 0:
        return 0.0

    return float(np.dot(va, vb) / magnitude)


def find_similar(
    query: str,
    candidates: Iterable[Tuple[str, str, Optional[Sequence[float]]]],
    top_k: int = 10,
    dims: int = DEFAULT_DIMS,
) -> List[Tuple[str, float]]:
    """
    Rank (id, text, fingerprint-or-None) candidates against query.
    Missing fingerprints are computed from the candidate text.
    """
    query_fp = fingerprint(query, dims)
    scored = []
    for cand_id, cand_text, cand_fp in candidates:
        if cand_fp is None:
            cand_fp = fingerprint(cand_text, dims)
        scored.append((cand_id, similarity(query_fp, cand_fp)))

    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:top_k]
