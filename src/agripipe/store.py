"""
Run persistence: one row per finished pipeline run plus its alert rows.

InMemoryRunStore is for tests and single-process use; SqliteRunStore writes to
a local SQLite file (or ':memory:').
"""

import json
import logging
import sqlite3
import threading
from typing import Any, Dict, List, Mapping, Optional, Sequence

from agripipe.models import PipelineRun

logger = logging.getLogger(__name__)


class RunStore:
    """Persistence collaborator of the orchestrator."""

    def save_run(self, run: PipelineRun, result: Any) -> str:
        """Persist a run and its result; returns the stored record id."""
        raise NotImplementedError

    def save_alerts(self, run_id: str, alerts: Sequence[Mapping[str, Any]]) -> int:
        """Persist alert rows for a run; returns how many were written."""
        raise NotImplementedError


def _result_dict(result: Any) -> Dict[str, Any]:
    return result.to_dict() if hasattr(result, "to_dict") else dict(result)


class InMemoryRunStore(RunStore):

    def __init__(self):
        self._lock = threading.Lock()
        self.runs: Dict[str, Dict[str, Any]] = {}
        self.alerts: Dict[str, List[Dict[str, Any]]] = {}

    def save_run(self, run, result):
        with self._lock:
            self.runs[run.run_id] = {
                "id": run.run_id,
                "startedAt": run.started_at,
                "completedAt": run.completed_at,
                "status": run.status,
                "farmerId": run.query.farmer_id,
                "result": _result_dict(result),
            }
        return run.run_id

    def save_alerts(self, run_id, alerts):
        with self._lock:
            self.alerts.setdefault(run_id, []).extend(dict(a) for a in alerts)
        return len(alerts)


class SqliteRunStore(RunStore):
    """SQLite-backed store. Safe to share across threads."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS pipeline_runs (
            id TEXT PRIMARY KEY,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL,
            farmer_id TEXT,
            result_json TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS alerts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL REFERENCES pipeline_runs(id),
            type TEXT NOT NULL,
            severity TEXT NOT NULL,
            message TEXT
        );
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.executescript(self.SCHEMA)
        self._conn.commit()
        logger.info("Run store ready at %s", path)

    def save_run(self, run, result):
        payload = json.dumps(_result_dict(result), default=str)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO pipeline_runs "
                "(id, started_at, completed_at, status, farmer_id, result_json) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (run.run_id, run.started_at, run.completed_at, run.status,
                 run.query.farmer_id, payload),
            )
            self._conn.commit()
        return run.run_id

    def save_alerts(self, run_id, alerts):
        rows = [
            (run_id, a.get("type", "alert"), a.get("severity", "info"), a.get("message"))
            for a in alerts
        ]
        if not rows:
            return 0
        with self._lock:
            self._conn.executemany(
                "INSERT INTO alerts (run_id, type, severity, message) VALUES (?, ?, ?, ?)",
                rows,
            )
            self._conn.commit()
        return len(rows)

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, started_at, completed_at, status, farmer_id, result_json "
                "FROM pipeline_runs WHERE id = ?",
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "id": row[0],
            "startedAt": row[1],
            "completedAt": row[2],
            "status": row[3],
            "farmerId": row[4],
            "result": json.loads(row[5]),
        }

    def get_alerts(self, run_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT type, severity, message FROM alerts WHERE run_id = ? ORDER BY id",
                (run_id,),
            ).fetchall()
        return [{"type": r[0], "severity": r[1], "message": r[2]} for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
