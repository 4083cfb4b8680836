"""Plan snapshot store (SQLAlchemy Core).

Keeps the last successful pricing-API response per TDSP and usage level.
Serves as the final fallback when the API is down and supplies the plan
counts in the deregulated-area listing. Works on SQLite by default; point
DATABASE_URL at Postgres in production.
"""

import json
import logging
import time
from pathlib import Path
from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from .models import Plan

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS plan_snapshots (
        tdsp_duns VARCHAR(20) NOT NULL,
        display_usage INTEGER NOT NULL,
        plan_json TEXT NOT NULL,
        plan_count INTEGER NOT NULL,
        fetched_at FLOAT NOT NULL
    )
"""
_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_snapshots_lookup
    ON plan_snapshots (tdsp_duns, display_usage, fetched_at)
"""


class PlanStore:
    """Timestamped snapshots of normalized plans."""

    def __init__(self, database_url: str):
        if database_url.startswith("sqlite:///"):
            Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.database_url = database_url
        self.engine = create_engine(database_url)
        with self.engine.connect() as conn:
            conn.execute(text(_SCHEMA))
            conn.execute(text(_INDEX))
            conn.commit()

    def save_snapshot(self, tdsp_duns: str, display_usage: int, plans: List[Plan]):
        """Replace the stored snapshot for a TDSP/usage pair."""
        payload = json.dumps([p.to_dict() for p in plans])
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    text(
                        "DELETE FROM plan_snapshots "
                        "WHERE tdsp_duns = :duns AND display_usage = :usage"
                    ),
                    {"duns": tdsp_duns, "usage": display_usage},
                )
                conn.execute(
                    text(
                        "INSERT INTO plan_snapshots (tdsp_duns, display_usage, plan_json, plan_count, fetched_at) "
                        "VALUES (:duns, :usage, :payload, :count, :ts)"
                    ),
                    {"duns": tdsp_duns, "usage": display_usage, "payload": payload,
                     "count": len(plans), "ts": time.time()},
                )
                conn.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to save plan snapshot for {tdsp_duns}: {e}")

    def latest_snapshot(self, tdsp_duns: str, display_usage: int = 1000,
                        max_age: float = None) -> Optional[List[Plan]]:
        """Most recent snapshot for a TDSP/usage, or None if absent or older than max_age."""
        sql = (
            "SELECT plan_json FROM plan_snapshots "
            "WHERE tdsp_duns = :duns AND display_usage = :usage"
        )
        params = {"duns": tdsp_duns, "usage": display_usage}
        if max_age is not None:
            sql += " AND fetched_at >= :cutoff"
            params["cutoff"] = time.time() - max_age
        sql += " ORDER BY fetched_at DESC LIMIT 1"

        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(sql), params).fetchone()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read plan snapshot for {tdsp_duns}: {e}")
            return None
        if not row:
            return None
        try:
            return [Plan.from_dict(d) for d in json.loads(row[0])]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Corrupt plan snapshot for {tdsp_duns}: {e}")
            return None

    def plan_count(self, tdsp_duns: str, display_usage: int = 1000) -> int:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    text(
                        "SELECT plan_count FROM plan_snapshots "
                        "WHERE tdsp_duns = :duns AND display_usage = :usage "
                        "ORDER BY fetched_at DESC LIMIT 1"
                    ),
                    {"duns": tdsp_duns, "usage": display_usage},
                ).fetchone()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to count stored plans for {tdsp_duns}: {e}")
            return 0
        return row[0] if row else 0

    def purge_older_than(self, seconds: float) -> int:
        with self.engine.connect() as conn:
            deleted = conn.execute(
                text("DELETE FROM plan_snapshots WHERE fetched_at < :cutoff"),
                {"cutoff": time.time() - seconds},
            ).rowcount
            conn.commit()
        if deleted:
            logger.info(f"Plan store: purged {deleted} old snapshots")
        return deleted

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Plan store unreachable: {e}")
            return False

    def close(self):
        self.engine.dispose()
