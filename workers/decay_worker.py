import logging
from datetime import datetime
from typing import Optional

from services.beliefcore.repository import BeliefRepository
from services.shared.config import Settings, load_settings
from services.shared.db import create_db_engine, init_schema
from services.shared.logging import TraceAdapter, setup_logging
from services.shared.ids import new_id


def run_decay(settings: Settings, now: Optional[datetime] = None) -> int:
    """
    One decay sweep against the configured store.
    The process owns the engine: opened here, disposed before returning.
    """
    tlog = TraceAdapter(logging.getLogger("decay_worker"), {"trace_id": new_id("trc")})

    engine = create_db_engine(settings.resolved_database_url)
    try:
        init_schema(engine)
        repo = BeliefRepository(engine, settings)
        decayed = repo.apply_decay(now=now)
    finally:
        engine.dispose()

    tlog.info(
        "Decay complete: %d belief(s) touched (rate=%s/day, floor=%s)",
        decayed, settings.confidence_decay_per_day, settings.min_confidence_floor,
    )
    return decayed


def main():
    """
    Decay runner:
    - Scheduled externally (cron / Cloud Scheduler); the engine has no scheduler.
    - Config from env + <data_dir>/config.json.
    """
    settings = load_settings()
    setup_logging(settings.log_level)
    run_decay(settings)


if __name__ == "__main__":
    main()
