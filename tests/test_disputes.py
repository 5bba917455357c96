"""Tests for tribunal/disputes.py -- the dispute state machine."""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

import pytest

from protocol import (
    BountyStatus, DisputeStatus, DisputeTier, NotificationType, Ruling,
)
from tribunal.errors import (
    AuthorizationError, DisputeAlreadyResolved, InsufficientJurors,
    InvalidStateTransition, NotFound, ValidationError,
)
from conftest import (
    EVIDENCE, FOLLOWUP, make_engine, make_user, make_juror_guilds,
    submitted_bounty, dispute_in_tribunal, vote_all,
)


@pytest.fixture
def engine():
    e = make_engine()
    yield e
    e.close()


@pytest.fixture
def world(engine):
    return submitted_bounty(engine)


def _raise(engine, world):
    return engine.raise_dispute(world.client_id, world.bounty_id, EVIDENCE)


class TestRaiseDispute:
    def test_opens_in_negotiation(self, engine, world):
        dispute = engine.disputes.get(_raise(engine, world))
        assert dispute.tier is DisputeTier.NEGOTIATION
        assert dispute.status is DisputeStatus.OPEN
        assert dispute.client_stake_at_risk == world.client_stake
        assert dispute.guild_stake_at_risk == world.guild_stake
        assert dispute.reward_credits == world.reward
        assert dispute.client_evidence.text == EVIDENCE
        assert engine.bounties.get(world.bounty_id).status is BountyStatus.DISPUTED

    def test_short_evidence_rejected(self, engine, world):
        with pytest.raises(ValidationError):
            engine.raise_dispute(world.client_id, world.bounty_id, "x" * 99)
        assert engine.bounties.get(world.bounty_id).status is BountyStatus.SUBMITTED

    def test_exactly_minimum_accepted(self, engine, world):
        dispute_id = engine.raise_dispute(world.client_id, world.bounty_id, "x" * 100)
        assert engine.disputes.get(dispute_id).status is DisputeStatus.OPEN

    def test_whitespace_padding_does_not_count(self, engine, world):
        with pytest.raises(ValidationError):
            engine.raise_dispute(world.client_id, world.bounty_id, "  " + "x" * 98 + "  ")

    def test_only_client_can_raise(self, engine, world):
        with pytest.raises(AuthorizationError):
            engine.raise_dispute(world.master_id, world.bounty_id, EVIDENCE)

    def test_one_dispute_per_bounty(self, engine, world):
        _raise(engine, world)
        with pytest.raises(InvalidStateTransition):
            _raise(engine, world)

    def test_open_bounty_not_disputable(self, engine):
        client = make_user(engine, "client")
        bounty = engine.bounties.post(client, "Logo", 300)
        with pytest.raises(InvalidStateTransition):
            engine.raise_dispute(client, bounty.id, EVIDENCE)

    def test_under_review_is_disputable(self, engine, world):
        engine.bounties.review(world.client_id, world.bounty_id, accept=False)
        assert _raise(engine, world)

    def test_guild_master_notified(self, engine, world):
        _raise(engine, world)
        types = [n.type for n in engine.notifications.list_for(world.master_id)]
        assert NotificationType.DISPUTE_RAISED in types

    def test_unknown_bounty(self, engine, world):
        with pytest.raises(NotFound):
            engine.raise_dispute(world.client_id, "bty_missing", EVIDENCE)


class TestEvidence:
    def test_guild_defense(self, engine, world):
        dispute_id = _raise(engine, world)
        result = engine.submit_evidence(world.master_id, dispute_id, "guild", FOLLOWUP,
                                        links=["https://staging.example.com/checkout"])
        assert result["tier"] == "Negotiation"
        dispute = engine.disputes.get(dispute_id)
        assert dispute.guild_evidence.text == FOLLOWUP
        assert dispute.guild_evidence.links == ["https://staging.example.com/checkout"]

    def test_client_evidence_appends(self, engine, world):
        dispute_id = _raise(engine, world)
        engine.submit_evidence(world.client_id, dispute_id, "client", FOLLOWUP)
        text = engine.disputes.get(dispute_id).client_evidence.text
        assert text.startswith(EVIDENCE)
        assert text.endswith(FOLLOWUP)

    def test_evidence_never_moves_tier(self, engine, world):
        dispute_id = _raise(engine, world)
        engine.disputes.request_ai_analysis(world.client_id, dispute_id)
        engine.submit_evidence(world.client_id, dispute_id, "client", FOLLOWUP)
        dispute = engine.disputes.get(dispute_id)
        assert dispute.tier is DisputeTier.AI_ARBITER
        assert dispute.status is DisputeStatus.AI_ANALYSIS

    def test_followup_minimum(self, engine, world):
        dispute_id = _raise(engine, world)
        with pytest.raises(ValidationError):
            engine.submit_evidence(world.client_id, dispute_id, "client", "too short")

    def test_wrong_side(self, engine, world):
        dispute_id = _raise(engine, world)
        with pytest.raises(AuthorizationError):
            engine.submit_evidence(world.client_id, dispute_id, "guild", FOLLOWUP)
        with pytest.raises(AuthorizationError):
            engine.submit_evidence(world.master_id, dispute_id, "client", FOLLOWUP)

    def test_unknown_role(self, engine, world):
        dispute_id = _raise(engine, world)
        with pytest.raises(ValidationError):
            engine.submit_evidence(world.client_id, dispute_id, "juror", FOLLOWUP)

    def test_too_many_attachments(self, engine, world):
        dispute_id = _raise(engine, world)
        images = [f"https://img.example.com/{i}.png" for i in range(21)]
        with pytest.raises(ValidationError):
            engine.submit_evidence(world.client_id, dispute_id, "client", FOLLOWUP, images=images)


class TestTiers:
    def test_tiers_only_move_forward(self, engine, world):
        dispute_id = _raise(engine, world)
        with pytest.raises(InvalidStateTransition):
            engine.escalate_to_tribunal(world.client_id, dispute_id)
        engine.disputes.request_ai_analysis(world.client_id, dispute_id)
        with pytest.raises(InvalidStateTransition):
            engine.disputes.request_ai_analysis(world.client_id, dispute_id)

    def test_outsider_cannot_advance(self, engine, world):
        dispute_id = _raise(engine, world)
        outsider = make_user(engine, "outsider")
        with pytest.raises(AuthorizationError):
            engine.disputes.request_ai_analysis(outsider, dispute_id)

    def test_guild_side_may_escalate(self, engine, world):
        make_juror_guilds(engine, 5)
        dispute_id = _raise(engine, world)
        engine.disputes.request_ai_analysis(world.master_id, dispute_id)
        jurors = engine.escalate_to_tribunal(world.master_id, dispute_id)
        dispute = engine.disputes.get(dispute_id)
        assert dispute.tier is DisputeTier.TRIBUNAL
        assert dispute.status is DisputeStatus.IN_TRIBUNAL
        assert dispute.tribunal_jurors == jurors

    def test_insufficient_jurors_keeps_ai_tier(self, engine, world):
        make_juror_guilds(engine, 3)
        dispute_id = _raise(engine, world)
        engine.disputes.request_ai_analysis(world.client_id, dispute_id)
        with pytest.raises(InsufficientJurors) as exc:
            engine.escalate_to_tribunal(world.client_id, dispute_id)
        assert exc.value.eligible == 3
        dispute = engine.disputes.get(dispute_id)
        assert dispute.tier is DisputeTier.AI_ARBITER
        assert dispute.status is DisputeStatus.AI_ANALYSIS
        assert dispute.tribunal_jurors == []

    def test_escalation_notifies_jurors(self, engine):
        world = dispute_in_tribunal(engine)
        for guild_id in world.jurors:
            master = world.juror_masters[guild_id]
            types = [n.type for n in engine.notifications.list_for(master)]
            assert NotificationType.TRIBUNAL_VOTE_NEEDED in types
        types = [n.type for n in engine.notifications.list_for(world.client_id)]
        assert NotificationType.DISPUTE_ESCALATED in types


class TestResolved:
    @pytest.fixture
    def resolved(self, engine):
        world = dispute_in_tribunal(engine)
        vote_all(engine, world, ["GuildWins"] * 5)
        return world

    def test_rejects_evidence(self, engine, resolved):
        with pytest.raises(DisputeAlreadyResolved):
            engine.submit_evidence(resolved.client_id, resolved.dispute_id, "client", FOLLOWUP)

    def test_rejects_tier_changes(self, engine, resolved):
        with pytest.raises(DisputeAlreadyResolved):
            engine.disputes.request_ai_analysis(resolved.client_id, resolved.dispute_id)
        with pytest.raises(DisputeAlreadyResolved):
            engine.escalate_to_tribunal(resolved.client_id, resolved.dispute_id)

    def test_ai_suggestion_ignored(self, engine, resolved):
        assert engine.disputes.record_ai_suggestion(resolved.dispute_id, {"ruling": "Split"}) is False

    def test_ruling_counts(self, engine, resolved):
        assert engine.disputes.ruling_counts(guild_id=resolved.guild_id) == (1, 1, 0)
        assert engine.disputes.ruling_counts(client_id=resolved.client_id) == (1, 0, 1)

    def test_mark_resolved_only_once(self, engine, resolved):
        assert engine.disputes.mark_resolved(resolved.dispute_id, Ruling.CLIENT_WINS) is False
        assert engine.disputes.get(resolved.dispute_id).final_ruling is Ruling.GUILD_WINS


class TestSnapshot:
    def test_state_includes_parties(self, engine, world):
        dispute_id = _raise(engine, world)
        state = engine.get_dispute_state(dispute_id)
        assert state["id"] == dispute_id
        assert state["bounty"]["status"] == "Disputed"
        assert state["bounty"]["proof"]["links"] == ["https://staging.example.com"]
        assert state["client"]["id"] == world.client_id
        assert state["guild"]["trust_score"] == 500
        assert state["tribunal_votes"] == []
        assert state["final_ruling"] is None

    def test_unknown_dispute(self, engine):
        with pytest.raises(NotFound):
            engine.get_dispute_state("dsp_missing")
