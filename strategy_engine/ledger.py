"""
Performance ledger with SQLite storage.

Every routing decision is inserted once and later updated, at most once,
with its observed outcome. Aggregates over those rows feed the adaptive
strategies. The BackgroundRecorder moves writes that must not block a
response onto a queue with at-least-once delivery.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .types import (
    LedgerError,
    Outcome,
    PerformanceRecord,
    PerformanceSummary,
    RoutingDecision,
    UserFeedback,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS decisions (
    decision_id TEXT PRIMARY KEY,
    timestamp REAL NOT NULL,
    strategy TEXT NOT NULL,
    model TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'single',
    complexity_score INTEGER NOT NULL,
    confidence REAL NOT NULL,
    metadata TEXT,

    -- Outcome, NULL until reported
    response_quality REAL,
    user_feedback TEXT CHECK (user_feedback IN ('positive', 'negative', 'neutral')),
    response_time_ms REAL,
    tokens_used INTEGER,
    error_occurred INTEGER,
    retry_count INTEGER,
    outcome_at REAL
);

CREATE INDEX IF NOT EXISTS idx_decisions_strategy ON decisions(strategy);
CREATE INDEX IF NOT EXISTS idx_decisions_model ON decisions(model);
CREATE INDEX IF NOT EXISTS idx_decisions_timestamp ON decisions(timestamp);
"""

# A rated decision counts as successful unless it errored or the user disliked it
SUCCESS_CONDITION = (
    "outcome_at IS NOT NULL AND COALESCE(error_occurred, 0) = 0 "
    "AND COALESCE(user_feedback, '') != 'negative'"
)


class PerformanceLedger:
    """
    Durable store of decisions and outcomes.

    Uses one short-lived connection per operation so the ledger can be
    called from worker threads (asyncio.to_thread) without sharing state.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(Path(db_path).expanduser())
        self._ensure_directory()
        self._init_database()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _init_database(self) -> None:
        """Initialize database with schema."""
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                # Enable WAL mode for concurrent access
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(SCHEMA_SQL)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise LedgerError(f"Could not initialize ledger at {self.db_path}: {e}") from e

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with proper settings."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise LedgerError(f"Could not open ledger at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            raise LedgerError(str(e)) from e
        finally:
            conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    def record_decision(self, decision: RoutingDecision) -> None:
        """Insert a decision. Durable once this returns."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO decisions (
                    decision_id, timestamp, strategy, model, kind,
                    complexity_score, confidence, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    decision.id,
                    decision.timestamp,
                    decision.strategy_name,
                    decision.selected_model,
                    decision.kind.value,
                    decision.complexity_score,
                    decision.confidence,
                    json.dumps(decision.metadata, default=str),
                ),
            )
            conn.commit()
        logger.debug("Recorded decision %s (%s)", decision.id, decision.strategy_name)

    def record_outcome(self, decision_id: str, outcome: Outcome) -> bool:
        """
        Attach an outcome to a recorded decision.

        Returns:
            True if updated. False, without raising, when the id is unknown
            or the decision already has an outcome.
        """
        feedback = UserFeedback(outcome.user_feedback).value if outcome.user_feedback else None
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE decisions SET
                    response_quality = ?, user_feedback = ?, response_time_ms = ?,
                    tokens_used = ?, error_occurred = ?, retry_count = ?, outcome_at = ?
                WHERE decision_id = ? AND outcome_at IS NULL
                """,
                (
                    outcome.response_quality,
                    feedback,
                    outcome.response_time_ms,
                    outcome.tokens_used,
                    int(outcome.error_occurred),
                    outcome.retry_count,
                    time.time(),
                    decision_id,
                ),
            )
            conn.commit()
            if cursor.rowcount > 0:
                return True

            exists = conn.execute(
                "SELECT 1 FROM decisions WHERE decision_id = ?", (decision_id,)
            ).fetchone()

        if exists:
            logger.warning("Outcome for decision %s already recorded; ignoring", decision_id)
        else:
            logger.warning("Outcome for unknown decision %s: decision not found", decision_id)
        return False

    # =========================================================================
    # Reads
    # =========================================================================

    def get_record(self, decision_id: str) -> PerformanceRecord | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM decisions WHERE decision_id = ?", (decision_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def recent_decisions(self, limit: int = 10) -> list[PerformanceRecord]:
        """Most recent decisions, newest first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM decisions ORDER BY timestamp DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count(self) -> int:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM decisions").fetchone()
        return row["n"]

    def strategy_performance(self, strategy: str) -> PerformanceSummary:
        """Aggregate performance of a strategy. Default summary when never used."""
        return self._summarize("strategy", strategy)

    def model_performance(self, model: str) -> PerformanceSummary:
        """Aggregate performance of a model. Default summary when never used."""
        return self._summarize("model", model)

    def strategy_breakdown(self) -> dict[str, PerformanceSummary]:
        """Summaries for every strategy that has recorded decisions."""
        with self._connection() as conn:
            rows = conn.execute("SELECT DISTINCT strategy FROM decisions").fetchall()
        return {row["strategy"]: self._summarize("strategy", row["strategy"]) for row in rows}

    def _summarize(self, column: str, name: str) -> PerformanceSummary:
        # column is one of two fixed names, never user input
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN outcome_at IS NOT NULL THEN 1 ELSE 0 END) AS rated,
                    AVG(response_quality) AS avg_quality,
                    SUM(CASE WHEN {SUCCESS_CONDITION} THEN 1 ELSE 0 END) AS successes,
                    AVG(response_time_ms) AS avg_latency
                FROM decisions WHERE {column} = ?
                """,
                (name,),
            ).fetchone()

        total = row["total"] or 0
        rated = row["rated"] or 0
        if rated == 0:
            return PerformanceSummary.default(name, total_decisions=total)

        return PerformanceSummary(
            name=name,
            total_decisions=total,
            rated_decisions=rated,
            average_quality=row["avg_quality"],
            success_rate=(row["successes"] or 0) / rated,
            average_latency_ms=row["avg_latency"] or 0.0,
            is_default=False,
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> PerformanceRecord:
        error = row["error_occurred"]
        return PerformanceRecord(
            decision_id=row["decision_id"],
            timestamp=row["timestamp"],
            strategy=row["strategy"],
            model=row["model"],
            complexity_score=row["complexity_score"],
            confidence=row["confidence"],
            response_quality=row["response_quality"],
            user_feedback=UserFeedback(row["user_feedback"]) if row["user_feedback"] else None,
            response_time_ms=row["response_time_ms"],
            tokens_used=row["tokens_used"],
            error_occurred=None if error is None else bool(error),
            retry_count=row["retry_count"],
            outcome_at=row["outcome_at"],
        )


# =============================================================================
# Background recording
# =============================================================================


class BackgroundRecorder:
    """
    Queue-backed worker for writes that must not block a response.

    Delivery is at-least-once: a failing job is retried up to
    ``max_attempts`` times with linear backoff, then dropped and logged.
    Jobs are plain callables run in a worker thread.

    Example:
        recorder = BackgroundRecorder()
        recorder.submit(ledger.record_outcome, decision_id, outcome)
        await recorder.flush()
    """

    def __init__(self, max_attempts: int = 3, retry_delay_s: float = 0.5):
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self.delivered = 0
        self.dropped = 0
        self._queue: asyncio.Queue[tuple[Callable[..., Any], tuple[Any, ...]]] | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._run())

    def submit(self, job: Callable[..., Any], *args: Any) -> None:
        """Queue a job. Starts the worker on first use."""
        if not self.running:
            self.start()
        assert self._queue is not None
        self._queue.put_nowait((job, args))

    async def flush(self) -> None:
        """Wait until every queued job has been delivered or dropped."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain the queue, then stop the worker."""
        if self._worker is None:
            return
        await self.flush()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            job, args = await self._queue.get()
            try:
                await self._deliver(job, args)
            finally:
                self._queue.task_done()

    async def _deliver(self, job: Callable[..., Any], args: tuple[Any, ...]) -> None:
        name = getattr(job, "__name__", repr(job))
        for attempt in range(1, self.max_attempts + 1):
            try:
                await asyncio.to_thread(job, *args)
                self.delivered += 1
                return
            except Exception as e:
                logger.warning(
                    "Background job %s failed (attempt %d/%d): %s",
                    name,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_s * attempt)
        self.dropped += 1
        logger.error("Background job %s dropped after %d attempts", name, self.max_attempts)


__all__ = [
    "BackgroundRecorder",
    "PerformanceLedger",
    "SCHEMA_SQL",
]
