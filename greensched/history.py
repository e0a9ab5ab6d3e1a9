"""
Experience History

Audit log of resolved decisions in SQLite, one row per experience
submitted to the policy, for debugging reward alignment after a run.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytz

from .rewards import Experience

logger = logging.getLogger(__name__)


@dataclass
class ExperienceRecord:
    """A single resolved decision to be logged."""

    recorded_at: str  # ISO timestamp (wall clock)
    tier: str
    task_id: str
    action: int
    reward: float
    done: int  # 0/1

    target: Optional[str] = None
    episode: int = 0

    # Simulation window
    decision_time: Optional[float] = None
    completion_time: Optional[float] = None

    # Policy outputs at decision time
    log_prob: Optional[float] = None
    value: Optional[float] = None

    submitted: int = 1  # 0 if the oracle rejected the submission


class ExperienceHistory:
    """Manages the experience_log table."""

    def __init__(self, db_path: str, timezone: str = "UTC"):
        self.db_path = db_path
        self.timezone = pytz.timezone(timezone)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create the experience_log table if it doesn't exist."""
        with sqlite3.connect(self.db_path, timeout=30.0) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS experience_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recorded_at TEXT NOT NULL,
                    episode INTEGER DEFAULT 0,

                    -- Decision
                    tier TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    target TEXT,
                    action INTEGER NOT NULL,

                    -- Outcome
                    reward REAL NOT NULL,
                    done INTEGER NOT NULL,
                    decision_time REAL,
                    completion_time REAL,

                    -- Policy outputs
                    log_prob REAL,
                    value REAL,

                    submitted INTEGER DEFAULT 1
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_experience_log_task ON experience_log(task_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_experience_log_episode ON experience_log(episode, tier)"
            )
            conn.commit()

    def record_for(
        self, experience: Experience, tier: str, episode: int = 0, submitted: bool = True
    ) -> ExperienceRecord:
        return ExperienceRecord(
            recorded_at=datetime.now(self.timezone).isoformat(),
            tier=tier,
            task_id=str(experience.task_id),
            action=int(experience.action),
            reward=float(experience.reward),
            done=1 if experience.done else 0,
            target=experience.target,
            episode=episode,
            decision_time=experience.decision_time,
            completion_time=experience.completion_time,
            log_prob=experience.log_prob,
            value=experience.value,
            submitted=1 if submitted else 0,
        )

    def log_experience(self, record: ExperienceRecord) -> int:
        """
        Log an experience record to the database.

        Returns the inserted row ID.
        """
        with sqlite3.connect(self.db_path, timeout=30.0) as conn:
            cursor = conn.execute(
                """
                INSERT INTO experience_log (
                    recorded_at, episode, tier, task_id, target, action,
                    reward, done, decision_time, completion_time,
                    log_prob, value, submitted
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.recorded_at,
                    record.episode,
                    record.tier,
                    record.task_id,
                    record.target,
                    record.action,
                    record.reward,
                    record.done,
                    record.decision_time,
                    record.completion_time,
                    record.log_prob,
                    record.value,
                    record.submitted,
                ),
            )
            conn.commit()
            return cursor.lastrowid or 0

    def recent(
        self,
        limit: int = 100,
        tier: Optional[str] = None,
        episode: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Most recent records first, optionally filtered.

        Args:
            limit: Maximum number of records to return
            tier: Only this tier ("global" or "local")
            episode: Only this episode
        """
        query = "SELECT * FROM experience_log WHERE 1=1"
        params: List[Any] = []

        if tier:
            query += " AND tier = ?"
            params.append(tier)

        if episode is not None:
            query += " AND episode = ?"
            params.append(episode)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with sqlite3.connect(self.db_path, timeout=30.0) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def count(self, tier: Optional[str] = None) -> int:
        with sqlite3.connect(self.db_path, timeout=30.0) as conn:
            if tier:
                row = conn.execute(
                    "SELECT COUNT(*) FROM experience_log WHERE tier = ?", (tier,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM experience_log").fetchone()
        return int(row[0])

    def get_stats(self, episode: Optional[int] = None) -> Dict[str, Any]:
        """Per-tier count, mean reward and done count."""
        query = """
            SELECT tier, COUNT(*), AVG(reward), SUM(done)
            FROM experience_log
        """
        params: List[Any] = []
        if episode is not None:
            query += " WHERE episode = ?"
            params.append(episode)
        query += " GROUP BY tier"

        with sqlite3.connect(self.db_path, timeout=30.0) as conn:
            rows = conn.execute(query, params).fetchall()

        return {
            row[0]: {
                "count": row[1],
                "mean_reward": round(row[2], 6) if row[2] is not None else 0.0,
                "done_count": row[3] or 0,
            }
            for row in rows
        }
