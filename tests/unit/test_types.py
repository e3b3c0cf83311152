"""
Unit tests for the shared data model.
"""

import pytest

from strategy_engine.types import (
    ChainPlan,
    ChainRole,
    ChainStep,
    ComplexityBand,
    ConversationMessage,
    DecisionKind,
    EnsemblePlan,
    EnsembleResult,
    ExecutionResult,
    MessageRole,
    NO_CONSENSUS,
    Outcome,
    RecentDecision,
    RequestContext,
    RoutingDecision,
    UserFeedback,
    Verdict,
    VoteTally,
    estimate_tokens,
    new_decision_id,
)


def make_decision(**overrides):
    fields = dict(
        strategy_name="speed",
        selected_model="m",
        temperature=0.3,
        max_tokens=1000,
        reasoning="r",
        confidence=0.9,
        complexity_score=20,
    )
    fields.update(overrides)
    return RoutingDecision(**fields)


class TestComplexityBand:
    """Tests for band boundaries."""

    @pytest.mark.parametrize(
        "score,band",
        [
            (0, ComplexityBand.SIMPLE),
            (29, ComplexityBand.SIMPLE),
            (30, ComplexityBand.MODERATE),
            (69, ComplexityBand.MODERATE),
            (70, ComplexityBand.COMPLEX),
            (100, ComplexityBand.COMPLEX),
        ],
    )
    def test_band_boundaries(self, score, band):
        """Bands are simple < 30 <= moderate < 70 <= complex."""
        assert ComplexityBand.from_score(score) == band


class TestRequestContext:
    """Tests for RequestContext validation and helpers."""

    def test_rejects_out_of_range_complexity(self):
        """Complexity must be within 0-100."""
        with pytest.raises(ValueError):
            RequestContext(user_message="x", complexity_score=101)

    def test_rejects_out_of_range_confidence(self):
        """Confidence must be within 0-1."""
        with pytest.raises(ValueError):
            RequestContext(user_message="x", confidence=1.5)

    def test_recent_decisions_are_capped(self):
        """Only the ten most recent decisions are kept."""
        recent = tuple(
            RecentDecision(f"d{i}", "speed", "m", 10, float(i)) for i in range(15)
        )
        context = RequestContext(user_message="x", recent_decisions=recent)
        assert len(context.recent_decisions) == 10
        assert context.recent_decisions[0].decision_id == "d5"

    def test_chat_messages_appends_user_message(self):
        """History is rendered before the current message."""
        context = RequestContext(
            user_message="now",
            history=(
                ConversationMessage(MessageRole.USER, "first"),
                ConversationMessage(MessageRole.ASSISTANT, "second"),
                ConversationMessage(MessageRole.USER, "third"),
            ),
        )
        messages = context.chat_messages(history_limit=2)
        assert messages == [
            {"role": "assistant", "content": "second"},
            {"role": "user", "content": "third"},
            {"role": "user", "content": "now"},
        ]

    def test_complexity_band_property(self):
        """Context exposes its complexity band."""
        assert RequestContext(user_message="x", complexity_score=75).complexity_band == ComplexityBand.COMPLEX


class TestRoutingDecision:
    """Tests for RoutingDecision invariants."""

    def test_single_kind_by_default(self):
        """A decision without plans is a single call."""
        assert make_decision().kind == DecisionKind.SINGLE

    def test_chain_and_ensemble_are_exclusive(self):
        """A decision cannot carry both plans."""
        chain = ChainPlan(steps=(ChainStep("m", ChainRole.DRAFT, 100, 0.3),))
        ensemble = EnsemblePlan(models=("m",))
        with pytest.raises(ValueError):
            make_decision(chain_plan=chain, ensemble_plan=ensemble)

    def test_confidence_clamped(self):
        """Confidence is clamped into [0, 1]."""
        assert make_decision(confidence=1.7).confidence == 1.0
        assert make_decision(confidence=-0.2).confidence == 0.0

    def test_all_models_in_preference_order(self):
        """Selected model first, then fallbacks."""
        decision = make_decision(selected_model="a", fallback_models=["b", "c"])
        assert decision.all_models == ["a", "b", "c"]

    def test_ids_are_unique(self):
        """Each decision gets a fresh id."""
        assert make_decision().id != make_decision().id
        assert new_decision_id().startswith("dec_")

    def test_to_dict_includes_kind(self):
        """Serialized decision names its execution kind."""
        data = make_decision(ensemble_plan=EnsemblePlan(models=("m",))).to_dict()
        assert data["kind"] == "ensemble"
        assert data["ensemble_plan"]["models"] == ("m",)


class TestPlans:
    """Tests for chain and ensemble plans."""

    def test_empty_chain_rejected(self):
        """A chain needs at least one step."""
        with pytest.raises(ValueError):
            ChainPlan(steps=())

    def test_empty_ensemble_rejected(self):
        """An ensemble needs at least one model."""
        with pytest.raises(ValueError):
            EnsemblePlan(models=())

    def test_threshold_must_be_probability(self):
        """Consensus threshold is within [0, 1]."""
        with pytest.raises(ValueError):
            EnsemblePlan(models=("m",), min_consensus_threshold=1.2)

    def test_weight_lookup(self):
        """Exact key, then longest prefix, then 1.0."""
        plan = EnsemblePlan(
            models=("qwen2.5-coder:7b-instruct-q5_K_M", "llama3.2:3b", "other"),
            weights={"qwen2.5-coder": 0.4, "qwen2.5-coder:7b": 0.5, "llama3.2:3b": 0.3},
        )
        assert plan.weight_for("llama3.2:3b") == 0.3
        assert plan.weight_for("qwen2.5-coder:7b-instruct-q5_K_M") == 0.5
        assert plan.weight_for("other") == 1.0


class TestOutcome:
    """Tests for outcomes."""

    def test_quality_must_be_probability(self):
        """Quality outside [0, 1] is rejected."""
        with pytest.raises(ValueError):
            Outcome(response_quality=1.2)

    @pytest.mark.parametrize(
        "feedback,quality",
        [("positive", 0.95), ("negative", 0.3), (UserFeedback.NEUTRAL, 0.7)],
    )
    def test_from_feedback(self, feedback, quality):
        """Feedback maps onto a quality score."""
        outcome = Outcome.from_feedback(feedback)
        assert outcome.response_quality == quality
        assert outcome.user_feedback == UserFeedback(feedback)


class TestVoting:
    """Tests for vote tallies and ensemble results."""

    def test_tally_score(self):
        """Score is total weight times mean weighted confidence."""
        tally = VoteTally(count=2, total_weight=0.8, total_confidence=0.69)
        assert tally.score == pytest.approx(0.276)

    def test_empty_tally_scores_zero(self):
        """No votes, no score."""
        assert VoteTally().score == 0.0

    def test_needs_review_on_no_consensus(self):
        """Execution results flag ensembles that did not reach consensus."""
        ensemble = EnsembleResult(
            consensus=NO_CONSENSUS,
            confidence=0.1,
            winning_verdict=Verdict.NO,
            votes=[],
            failures={},
            breakdown={},
            execution_time_ms=1.0,
            model_agreement=1.0,
        )
        result = ExecutionResult(
            decision_id="d", kind=DecisionKind.ENSEMBLE, text=NO_CONSENSUS, model_used="m", ensemble=ensemble
        )
        assert not ensemble.has_consensus
        assert result.needs_review


class TestTokenEstimate:
    """Tests for the rough token estimate."""

    def test_four_chars_per_token(self):
        """Estimate is length // 4."""
        assert estimate_tokens("a" * 40) == 10
        assert estimate_tokens("") == 0

    def test_message_token_count(self):
        """Explicit token counts win over the estimate."""
        assert ConversationMessage(MessageRole.USER, "a" * 40).token_count == 10
        assert ConversationMessage(MessageRole.USER, "a" * 40, tokens=3).token_count == 3
