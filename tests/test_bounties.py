"""Tests for tribunal/bounties.py -- bounty lifecycle with escrow."""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

import pytest

from protocol import ActivityType, BountyStatus, GuildRole, NotificationType, TxType
from tribunal.errors import (
    AuthorizationError, InsufficientFunds, InvalidStateTransition, ValidationError,
)
from conftest import make_engine, make_user, make_guild, submitted_bounty, assert_conserved


@pytest.fixture
def engine():
    e = make_engine()
    yield e
    e.close()


class TestPost:
    def test_post_locks_only_the_stake(self, engine):
        client = make_user(engine, "client", credits=2000)
        bounty = engine.bounties.post(client, "Logo", 300, client_stake=200)
        assert bounty.status is BountyStatus.OPEN
        bal = engine.ledger.balance(client)
        assert (bal.available, bal.staked) == (1800, 200)

    def test_post_without_stake_moves_nothing(self, engine):
        client = make_user(engine, "client", credits=2000)
        engine.bounties.post(client, "Logo", 300)
        assert [e.type for e in engine.ledger.history(client)] == [TxType.WELCOME_BONUS]

    def test_reward_below_minimum(self, engine):
        client = make_user(engine, "client")
        with pytest.raises(ValidationError):
            engine.bounties.post(client, "Tiny", 99)

    def test_cannot_post_without_funds(self, engine):
        client = make_user(engine, "client", credits=200)
        with pytest.raises(InsufficientFunds):
            engine.bounties.post(client, "Too big", 150, client_stake=300)
        assert engine.db.fetchone("SELECT COUNT(*) AS n FROM bounties")["n"] == 0

    def test_guild_cannot_post(self, engine):
        guild_id, _ = make_guild(engine, "smiths", treasury=5000)
        with pytest.raises(ValidationError):
            engine.bounties.post(guild_id, "Guild job", 200)

    def test_cancel_refunds_escrow(self, engine):
        client = make_user(engine, "client", credits=2000)
        bounty = engine.bounties.post(client, "Logo", 300, client_stake=200)
        engine.bounties.cancel(client, bounty.id)
        bal = engine.ledger.balance(client)
        assert (bal.available, bal.staked) == (2000, 0)
        assert engine.ledger.history(client)[-1].type is TxType.BOUNTY_REFUND


class TestAccept:
    def test_master_accepts_and_stakes(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", treasury=1000)
        bounty = engine.bounties.post(client, "Logo", 300, guild_stake_required=400)
        bounty = engine.bounties.accept(master_id, bounty.id, guild_id)
        assert bounty.status is BountyStatus.ACCEPTED
        assert bounty.guild_stake_locked == 400
        assert engine.ledger.balance(guild_id).staked == 400
        types = [n.type for n in engine.notifications.list_for(client)]
        assert NotificationType.BOUNTY_ACCEPTED in types

    def test_member_cannot_accept(self, engine):
        client = make_user(engine, "client")
        guild_id, _ = make_guild(engine, "smiths", treasury=1000)
        member = make_user(engine, "member")
        engine.accounts.add_member(guild_id, member, GuildRole.OFFICER)
        bounty = engine.bounties.post(client, "Logo", 300)
        with pytest.raises(AuthorizationError):
            engine.bounties.accept(member, bounty.id, guild_id)

    def test_min_guild_trust_enforced(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", trust=450, treasury=1000)
        bounty = engine.bounties.post(client, "Logo", 300, min_guild_trust=500)
        with pytest.raises(AuthorizationError):
            engine.bounties.accept(master_id, bounty.id, guild_id)

    def test_own_guild_cannot_accept(self, engine):
        guild_id, master_id = make_guild(engine, "smiths", treasury=1000, master_credits=2000)
        bounty = engine.bounties.post(master_id, "Inside job", 300)
        with pytest.raises(AuthorizationError):
            engine.bounties.accept(master_id, bounty.id, guild_id)

    def test_stake_shortfall_rolls_back(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", treasury=100)
        bounty = engine.bounties.post(client, "Logo", 300, guild_stake_required=400)
        with pytest.raises(InsufficientFunds):
            engine.bounties.accept(master_id, bounty.id, guild_id)
        assert engine.bounties.get(bounty.id).status is BountyStatus.OPEN

    def test_cannot_accept_twice(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", treasury=1000)
        bounty = engine.bounties.post(client, "Logo", 300)
        engine.bounties.accept(master_id, bounty.id, guild_id)
        with pytest.raises(InvalidStateTransition):
            engine.bounties.accept(master_id, bounty.id, guild_id)


class TestDelivery:
    def test_submit_requires_proof(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", treasury=1000)
        bounty = engine.bounties.post(client, "Logo", 300)
        engine.bounties.accept(master_id, bounty.id, guild_id)
        with pytest.raises(ValidationError):
            engine.bounties.submit_proof(master_id, bounty.id, "   ")

    def test_submit_rejects_bad_links(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", treasury=1000)
        bounty = engine.bounties.post(client, "Logo", 300)
        engine.bounties.accept(master_id, bounty.id, guild_id)
        with pytest.raises(ValidationError):
            engine.bounties.submit_proof(master_id, bounty.id, "done", links=["ftp://files"])

    def test_outsider_cannot_submit(self, engine):
        world = submitted_bounty(engine)
        outsider = make_user(engine, "outsider")
        with pytest.raises(AuthorizationError):
            engine.bounties.submit_proof(outsider, world.bounty_id, "mine now")

    def test_start_then_submit(self, engine):
        client = make_user(engine, "client")
        guild_id, master_id = make_guild(engine, "smiths", treasury=1000)
        bounty = engine.bounties.post(client, "Logo", 300)
        engine.bounties.accept(master_id, bounty.id, guild_id)
        assert engine.bounties.start(master_id, bounty.id).status is BountyStatus.IN_PROGRESS
        bounty = engine.bounties.submit_proof(master_id, bounty.id, "done",
                                              images=["https://img.example.com/logo.png"])
        assert bounty.status is BountyStatus.SUBMITTED
        assert bounty.proof.images == ["https://img.example.com/logo.png"]


class TestReview:
    def test_accept_pays_guild(self, engine):
        world = submitted_bounty(engine, reward=300, client_stake=1000, guild_stake=500)
        bounty = engine.bounties.review(world.client_id, world.bounty_id, accept=True)
        assert bounty.status is BountyStatus.COMPLETED
        assert bounty.completed_at is not None
        client = engine.ledger.balance(world.client_id)
        guild = engine.ledger.balance(world.guild_id)
        assert (client.available, client.staked) == (4700, 0)
        assert (guild.available, guild.staked) == (2300, 0)
        assert engine.accounts.get(world.guild_id).total_value_cleared == 300
        assert_conserved(engine)

    def test_accept_needs_reward_in_hand(self, engine):
        world = submitted_bounty(engine, reward=300, client_stake=0, client_credits=5000)
        engine.ledger.debit(world.client_id, 4800)
        with pytest.raises(InsufficientFunds):
            engine.bounties.review(world.client_id, world.bounty_id, accept=True)
        assert engine.bounties.get(world.bounty_id).status is BountyStatus.SUBMITTED
        assert engine.ledger.balance(world.client_id).available == 200
        assert engine.ledger.balance(world.guild_id).staked == 500
        assert_conserved(engine)

    def test_reject_moves_to_under_review(self, engine):
        world = submitted_bounty(engine)
        bounty = engine.bounties.review(world.client_id, world.bounty_id, accept=False)
        assert bounty.status is BountyStatus.UNDER_REVIEW
        bounty = engine.bounties.review(world.client_id, world.bounty_id, accept=True)
        assert bounty.status is BountyStatus.COMPLETED

    def test_only_client_reviews(self, engine):
        world = submitted_bounty(engine)
        with pytest.raises(AuthorizationError):
            engine.bounties.review(world.master_id, world.bounty_id, accept=True)

    def test_completed_work_counts_for_submitter(self, engine):
        world = submitted_bounty(engine)
        engine.bounties.review(world.client_id, world.bounty_id, accept=True)
        history = engine.trust.user_history(world.master_id)
        assert history.completed_bounties == 1
        assert engine.bounties.count_for_guild(world.guild_id, BountyStatus.COMPLETED) == 1
        kinds = [a.type for a in engine.accounts.activities(world.guild_id)]
        assert ActivityType.BOUNTY_COMPLETED in kinds

    def test_completed_is_terminal(self, engine):
        world = submitted_bounty(engine)
        engine.bounties.review(world.client_id, world.bounty_id, accept=True)
        with pytest.raises(InvalidStateTransition):
            engine.bounties.review(world.client_id, world.bounty_id, accept=True)
