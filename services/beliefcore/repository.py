import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine

from services.beliefcore.fingerprint import FingerprintDimensionError, fingerprint
from services.beliefcore.models import (
    Belief,
    BeliefChanges,
    BeliefDomain,
    DomainStats,
    NewBelief,
    SearchOptions,
)
from services.shared.codec import dump_list, load_list
from services.shared.config import Settings
from services.shared.db import exec_sql
from services.shared.ids import new_id

logger = logging.getLogger(__name__)

# Change-set fields stored as serialized lists.
_LIST_COLUMNS = frozenset({"evidence_ids", "tags", "fingerprint"})


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def clamp_confidence(value: float, floor: float) -> float:
    return max(floor, min(1.0, value))


def _active_filters(options: SearchOptions, alias: str = "") -> Tuple[List[str], Dict[str, Any]]:
    """WHERE fragments shared by every filtered read path."""
    col = f"{alias}." if alias else ""
    clauses: List[str] = []
    params: Dict[str, Any] = {}

    if options.active_only:
        clauses.append(f"{col}invalidated_at IS NULL")
    if options.min_confidence is not None:
        clauses.append(f"{col}confidence >= :min_confidence")
        params["min_confidence"] = options.min_confidence
    if options.domain is not None:
        clauses.append(f"{col}domain = :domain")
        params["domain"] = options.domain.value

    return clauses, params


def _where(clauses: Sequence[str]) -> str:
    return (" WHERE " + " AND ".join(clauses)) if clauses else ""


class BeliefRepository:
    """
    Persistence of belief records on top of an explicitly supplied engine.
    Every call is one short, independent transaction.
    """

    def __init__(self, engine: Engine, settings: Settings):
        self.engine = engine
        self.settings = settings

    @property
    def floor(self) -> float:
        return self.settings.min_confidence_floor

    def _check_fingerprint(self, fp: Optional[Sequence[float]]) -> None:
        # every stored fingerprint has exactly fingerprint_dims entries
        if fp is not None and len(fp) != self.settings.fingerprint_dims:
            raise FingerprintDimensionError(
                f"Fingerprint has {len(fp)} dimensions, store expects {self.settings.fingerprint_dims}"
            )

    # ------------------------------------------------------------------
    # create / read
    # ------------------------------------------------------------------

    def create(self, new: NewBelief) -> Belief:
        now = now_utc()
        confidence = new.confidence if new.confidence is not None else self.settings.default_confidence
        importance = new.importance if new.importance is not None else self.settings.default_importance
        fp = new.fingerprint
        if fp is None:
            fp = fingerprint(new.text, self.settings.fingerprint_dims)
        self._check_fingerprint(fp)

        belief = Belief(
            id=new_id("blf"),
            text=new.text,
            domain=new.domain,
            confidence=clamp_confidence(confidence, self.floor),
            evidence_ids=list(new.evidence_ids),
            supporting_count=new.supporting_count,
            contradicting_count=new.contradicting_count,
            derived_at=new.derived_at or now,
            last_evaluated=new.last_evaluated or new.derived_at or now,
            supersedes_id=new.supersedes_id,
            importance=importance,
            tags=list(new.tags),
            fingerprint=fp,
        )

        exec_sql(
            self.engine,
            """
            INSERT INTO beliefs (
                id, text, domain, confidence, evidence_ids,
                supporting_count, contradicting_count, derived_at, last_evaluated,
                supersedes_id, invalidated_at, invalidation_reason, importance, tags, fingerprint
            )
            VALUES (
                :id, :text, :domain, :confidence, :evidence_ids,
                :supporting_count, :contradicting_count, :derived_at, :last_evaluated,
                :supersedes_id, NULL, NULL, :importance, :tags, :fingerprint
            )
            """,
            id=belief.id,
            text=belief.text,
            domain=belief.domain.value,
            confidence=belief.confidence,
            evidence_ids=dump_list(belief.evidence_ids),
            supporting_count=belief.supporting_count,
            contradicting_count=belief.contradicting_count,
            derived_at=_iso(belief.derived_at),
            last_evaluated=_iso(belief.last_evaluated),
            supersedes_id=belief.supersedes_id,
            importance=belief.importance,
            tags=dump_list(belief.tags),
            fingerprint=dump_list(belief.fingerprint),
        )

        logger.info("Created belief %s [%s] confidence=%.2f", belief.id, belief.domain.value, belief.confidence)
        return belief

    def get_by_id(self, belief_id: str) -> Optional[Belief]:
        rows = self._select("SELECT * FROM beliefs WHERE id = :id", {"id": belief_id})
        if not rows:
            logger.debug("Belief %s not found", belief_id)
            return None
        return rows[0]

    def get_by_domain(self, domain: BeliefDomain, active_only: bool = True) -> List[Belief]:
        clauses, params = _active_filters(SearchOptions(domain=domain, active_only=active_only))
        sql = "SELECT * FROM beliefs" + _where(clauses) + " ORDER BY confidence DESC, importance DESC"
        return self._select(sql, params)

    def get_active(self, options: Optional[SearchOptions] = None) -> List[Belief]:
        options = options or SearchOptions()
        clauses, params = _active_filters(options)
        sql = "SELECT * FROM beliefs" + _where(clauses) + " ORDER BY importance DESC, confidence DESC"
        if options.limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = options.limit
        return self._select(sql, params)

    def full_text_match(self, match_expr: str, options: Optional[SearchOptions] = None) -> List[Belief]:
        """Beliefs whose text/tags match an FTS5 expression, best rank first."""
        options = options or SearchOptions()
        clauses, params = _active_filters(options, alias="b")
        clauses.insert(0, "beliefs_fts MATCH :match")
        params["match"] = match_expr

        sql = (
            "SELECT b.* FROM beliefs b JOIN beliefs_fts ON b.rowid = beliefs_fts.rowid"
            + _where(clauses)
            + " ORDER BY beliefs_fts.rank"
        )
        if options.limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = options.limit
        return self._select(sql, params)

    def count(self, options: Optional[SearchOptions] = None) -> int:
        options = options or SearchOptions()
        clauses, params = _active_filters(options)
        with self.engine.connect() as conn:
            return int(conn.execute(text("SELECT COUNT(*) FROM beliefs" + _where(clauses)), params).scalar_one())

    def get_stats_per_domain(self) -> Dict[BeliefDomain, DomainStats]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT domain, COUNT(*) AS count, AVG(confidence) AS avg_confidence
                    FROM beliefs
                    WHERE invalidated_at IS NULL
                    GROUP BY domain
                    """
                )
            ).mappings().all()

        return {
            BeliefDomain(r["domain"]): DomainStats(count=int(r["count"]), avg_confidence=float(r["avg_confidence"]))
            for r in rows
        }

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------

    def update(self, belief_id: str, changes: BeliefChanges) -> Optional[Belief]:
        if "fingerprint" in changes.model_fields_set:
            self._check_fingerprint(changes.fingerprint)

        existing = self.get_by_id(belief_id)
        if existing is None:
            return None
        if changes.is_empty():
            return existing

        assignments: List[str] = []
        params: Dict[str, Any] = {"id": belief_id}
        for name, value in sorted(changes.supplied().items()):
            if name == "confidence":
                value = clamp_confidence(value, self.floor)
            elif name == "last_evaluated":
                value = _iso(value)
            elif name in _LIST_COLUMNS:
                value = dump_list(value)
            assignments.append(f"{name} = :{name}")
            params[name] = value

        exec_sql(self.engine, f"UPDATE beliefs SET {', '.join(assignments)} WHERE id = :id", **params)
        logger.debug("Updated belief %s fields=%s", belief_id, sorted(changes.model_fields_set))
        return self.get_by_id(belief_id)

    def invalidate(self, belief_id: str, reason: str, now: Optional[datetime] = None) -> bool:
        changed = exec_sql(
            self.engine,
            """
            UPDATE beliefs
            SET invalidated_at = :now, invalidation_reason = :reason
            WHERE id = :id AND invalidated_at IS NULL
            """,
            now=_iso(now or now_utc()),
            reason=reason,
            id=belief_id,
        )
        if changed:
            logger.info("Invalidated belief %s: %s", belief_id, reason)
        return changed > 0

    def increment_supporting(self, belief_id: str) -> bool:
        return exec_sql(
            self.engine,
            "UPDATE beliefs SET supporting_count = supporting_count + 1 WHERE id = :id",
            id=belief_id,
        ) > 0

    def increment_contradicting(self, belief_id: str) -> bool:
        return exec_sql(
            self.engine,
            "UPDATE beliefs SET contradicting_count = contradicting_count + 1 WHERE id = :id",
            id=belief_id,
        ) > 0

    def adjust_confidence(self, belief_ids: Sequence[str], delta: float) -> int:
        if not belief_ids:
            return 0

        stmt = text(
            """
            UPDATE beliefs
            SET confidence = MAX(:floor, MIN(1.0, confidence + :delta))
            WHERE id IN :ids
            """
        ).bindparams(bindparam("ids", expanding=True))

        with self.engine.begin() as conn:
            res = conn.execute(stmt, {"floor": self.floor, "delta": delta, "ids": list(belief_ids)})
            changed = int(res.rowcount or 0)

        logger.info("Adjusted confidence by %+.3f on %d belief(s)", delta, changed)
        return changed

    def apply_decay(self, now: Optional[datetime] = None) -> int:
        """
        Time-linear decay over every active belief above the floor:
            confidence -= decay_per_day * days_since(last_evaluated)
        clamped to [floor, 1.0]. last_evaluated is left untouched.
        """
        changed = exec_sql(
            self.engine,
            """
            UPDATE beliefs
            SET confidence = MAX(
                :floor,
                MIN(1.0, confidence - :rate * (julianday(:now) - julianday(last_evaluated)))
            )
            WHERE invalidated_at IS NULL
              AND confidence > :floor
            """,
            floor=self.floor,
            rate=self.settings.confidence_decay_per_day,
            now=_iso(now or now_utc()),
        )
        logger.info("Decay sweep touched %d belief(s)", changed)
        return changed

    # ------------------------------------------------------------------
    # rows
    # ------------------------------------------------------------------

    def _select(self, sql: str, params: Mapping[str, Any]) -> List[Belief]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), dict(params)).mappings().all()
        return [self._row_to_belief(r) for r in rows]

    @staticmethod
    def _row_to_belief(row: Mapping[str, Any]) -> Belief:
        return Belief(
            id=row["id"],
            text=row["text"],
            domain=row["domain"],
            confidence=row["confidence"],
            evidence_ids=load_list(row["evidence_ids"]) or [],
            supporting_count=row["supporting_count"],
            contradicting_count=row["contradicting_count"],
            derived_at=row["derived_at"],
            last_evaluated=row["last_evaluated"],
            supersedes_id=row["supersedes_id"],
            invalidated_at=row["invalidated_at"],
            invalidation_reason=row["invalidation_reason"],
            importance=row["importance"],
            tags=load_list(row["tags"]) or [],
            fingerprint=load_list(row["fingerprint"]),
        )
