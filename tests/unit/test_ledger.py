"""
Unit tests for the performance ledger and background recorder.
"""

import asyncio
import os
import shutil
import sqlite3

import pytest

from strategy_engine.ledger import BackgroundRecorder, PerformanceLedger
from strategy_engine.types import LedgerError, Outcome, RoutingDecision, UserFeedback


def make_decision(strategy="speed", model="m", **overrides):
    fields = dict(
        strategy_name=strategy,
        selected_model=model,
        temperature=0.3,
        max_tokens=1000,
        reasoning="r",
        confidence=0.8,
        complexity_score=20,
    )
    fields.update(overrides)
    return RoutingDecision(**fields)


# =============================================================================
# Storage
# =============================================================================


class TestStorage:
    """Tests for SQLite storage configuration."""

    def test_creates_database(self, temp_db_path):
        """Ledger creates a valid SQLite database with the decisions table."""
        PerformanceLedger(temp_db_path)
        conn = sqlite3.connect(temp_db_path)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert "decisions" in tables

    def test_uses_wal_mode(self, temp_db_path):
        """WAL journaling is enabled."""
        PerformanceLedger(temp_db_path)
        conn = sqlite3.connect(temp_db_path)
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode.lower() == "wal"

    def test_creates_parent_directory(self, tmp_path):
        """Missing parent directories are created."""
        path = tmp_path / "a" / "b" / "ledger.db"
        PerformanceLedger(path)
        assert os.path.exists(path)

    def test_survives_reopen(self, temp_db_path):
        """Decisions are durable across ledger instances."""
        decision = make_decision()
        PerformanceLedger(temp_db_path).record_decision(decision)
        assert PerformanceLedger(temp_db_path).get_record(decision.id) is not None


# =============================================================================
# Decisions and outcomes
# =============================================================================


class TestRecording:
    """Tests for decision and outcome writes."""

    def test_record_and_read_back(self, ledger):
        """A recorded decision reads back without an outcome."""
        decision = make_decision(strategy="cost", model="small", complexity_score=35)
        ledger.record_decision(decision)

        record = ledger.get_record(decision.id)
        assert record.strategy == "cost"
        assert record.model == "small"
        assert record.complexity_score == 35
        assert not record.has_outcome

    def test_duplicate_id_raises_ledger_error(self, ledger):
        """Decision ids are unique."""
        decision = make_decision()
        ledger.record_decision(decision)
        with pytest.raises(LedgerError):
            ledger.record_decision(decision)

    def test_unopenable_database_raises_ledger_error(self, tmp_path):
        """A ledger whose directory disappeared raises LedgerError, not sqlite3.Error."""
        ledger = PerformanceLedger(tmp_path / "gone" / "ledger.db")
        shutil.rmtree(tmp_path / "gone")

        with pytest.raises(LedgerError):
            ledger.record_decision(make_decision())
        with pytest.raises(LedgerError):
            ledger.record_outcome("dec_missing", Outcome(response_quality=0.5))

    def test_record_outcome(self, ledger):
        """Outcomes attach to their decision."""
        decision = make_decision()
        ledger.record_decision(decision)

        assert ledger.record_outcome(decision.id, Outcome.from_feedback("positive", tokens_used=120))
        record = ledger.get_record(decision.id)
        assert record.has_outcome
        assert record.response_quality == 0.95
        assert record.user_feedback == UserFeedback.POSITIVE
        assert record.tokens_used == 120
        assert record.error_occurred is False

    def test_outcome_recorded_once(self, ledger):
        """A second outcome for the same decision is ignored."""
        decision = make_decision()
        ledger.record_decision(decision)
        assert ledger.record_outcome(decision.id, Outcome(response_quality=0.9))
        assert not ledger.record_outcome(decision.id, Outcome(response_quality=0.1))
        assert ledger.get_record(decision.id).response_quality == 0.9

    def test_unknown_id_returns_false(self, ledger):
        """Outcomes for unknown ids are rejected without raising."""
        assert ledger.record_outcome("dec_missing", Outcome(response_quality=0.5)) is False

    def test_recent_decisions_newest_first(self, ledger):
        """Recent decisions come back newest first."""
        for i in range(5):
            ledger.record_decision(make_decision(timestamp=1000.0 + i))
        recent = ledger.recent_decisions(limit=3)
        assert [r.timestamp for r in recent] == [1004.0, 1003.0, 1002.0]
        assert ledger.count() == 5


# =============================================================================
# Aggregates
# =============================================================================


class TestAggregates:
    """Tests for performance summaries."""

    def test_unused_strategy_gets_default(self, ledger):
        """No rated decisions gives the documented defaults."""
        summary = ledger.strategy_performance("adaptive")
        assert summary.is_default
        assert summary.success_rate == 0.5
        assert summary.average_quality == 0.5
        assert summary.total_decisions == 0

    def test_unrated_decisions_still_default(self, ledger):
        """Decisions without outcomes count but do not rate."""
        ledger.record_decision(make_decision(strategy="adaptive"))
        summary = ledger.strategy_performance("adaptive")
        assert summary.is_default
        assert summary.total_decisions == 1

    def test_success_rate(self, ledger):
        """Errors and negative feedback count as failures."""
        outcomes = [
            Outcome(response_quality=0.9),
            Outcome.from_feedback("negative"),
            Outcome(response_quality=0.8, error_occurred=True),
            Outcome.from_feedback("neutral"),
        ]
        for outcome in outcomes:
            decision = make_decision(strategy="quality", model="big")
            ledger.record_decision(decision)
            ledger.record_outcome(decision.id, outcome)
        ledger.record_decision(make_decision(strategy="quality", model="big"))

        summary = ledger.strategy_performance("quality")
        assert not summary.is_default
        assert summary.total_decisions == 5
        assert summary.rated_decisions == 4
        assert summary.success_rate == pytest.approx(0.5)
        assert summary.average_quality == pytest.approx((0.9 + 0.3 + 0.8 + 0.7) / 4)

    def test_model_performance(self, ledger):
        """Models are summarized independently of strategies."""
        decision = make_decision(model="small")
        ledger.record_decision(decision)
        ledger.record_outcome(decision.id, Outcome(response_quality=0.6, response_time_ms=200.0))
        summary = ledger.model_performance("small")
        assert summary.success_rate == 1.0
        assert summary.average_latency_ms == 200.0

    def test_strategy_breakdown(self, ledger):
        """Every strategy with decisions is summarized."""
        ledger.record_decision(make_decision(strategy="speed"))
        ledger.record_decision(make_decision(strategy="cost"))
        assert set(ledger.strategy_breakdown()) == {"speed", "cost"}


# =============================================================================
# Background recorder
# =============================================================================


class TestBackgroundRecorder:
    """Tests for queued at-least-once writes."""

    @pytest.mark.asyncio
    async def test_delivers_jobs(self):
        """Submitted jobs run in order."""
        seen = []
        recorder = BackgroundRecorder()
        recorder.submit(seen.append, 1)
        recorder.submit(seen.append, 2)
        await recorder.flush()
        assert seen == [1, 2]
        assert recorder.delivered == 2
        await recorder.stop()
        assert not recorder.running

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """A failing job is retried."""
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise RuntimeError("transient")

        recorder = BackgroundRecorder(max_attempts=3, retry_delay_s=0)
        recorder.submit(flaky)
        await recorder.stop()
        assert len(attempts) == 2
        assert recorder.delivered == 1
        assert recorder.dropped == 0

    @pytest.mark.asyncio
    async def test_drops_after_max_attempts(self):
        """A job that keeps failing is dropped, not raised."""

        def broken():
            raise RuntimeError("permanent")

        recorder = BackgroundRecorder(max_attempts=2, retry_delay_s=0)
        recorder.submit(broken)
        await recorder.flush()
        assert recorder.dropped == 1
        await recorder.stop()

    @pytest.mark.asyncio
    async def test_records_outcome_in_background(self, ledger):
        """Ledger writes can be queued."""
        decision = make_decision()
        ledger.record_decision(decision)
        recorder = BackgroundRecorder()
        recorder.submit(ledger.record_outcome, decision.id, Outcome(response_quality=0.7))
        await recorder.stop()
        assert ledger.get_record(decision.id).response_quality == 0.7

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        """Stopping an idle recorder is a no-op."""
        await BackgroundRecorder().stop()
        await asyncio.sleep(0)
