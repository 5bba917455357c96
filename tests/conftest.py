import sys
import os
import random
from types import SimpleNamespace

# Ensure repo root is on the path for all tests
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from protocol import TxType
from tribunal.service import Engine


EVIDENCE = (
    "The delivered landing page is missing the checkout flow, the contact form "
    "posts nowhere, and half of the agreed pages return 404 errors."
)
FOLLOWUP = "Screenshots of the broken checkout and the failing form submissions attached."
START_TIME = 1_700_000_000.0
DAY = 86400


class FakeClock:
    """Settable clock injected into the Database."""

    def __init__(self, start: float = START_TIME):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, days: float = 0, seconds: float = 0):
        self.t += days * DAY + seconds


def make_engine(clock=None, seed=7, arbiter=None):
    """In-memory engine with deterministic juror sampling and synchronous recompute."""
    return Engine(":memory:", arbiter=arbiter, rng=random.Random(seed), clock=clock,
                  async_recompute=False)


def make_user(engine, name="alice", credits=5000, **kwargs):
    return engine.accounts.create_user(name, welcome_bonus=credits, **kwargs).id


def make_guild(engine, name="guild", trust=500, treasury=0, master_credits=1000):
    """Guild with a fresh master. Returns (guild_id, master_id)."""
    master_id = make_user(engine, f"{name}-master", credits=master_credits)
    guild_id = engine.accounts.create_guild(name, master_id, trust_score=trust).id
    if treasury:
        engine.ledger.credit(guild_id, treasury, TxType.PURCHASE, description="Treasury top-up")
    return guild_id, master_id


def make_juror_guilds(engine, n=5, trust=650, treasury=5000):
    """n guilds eligible for tribunal duty. Returns {guild_id: master_id}."""
    jurors = {}
    for i in range(n):
        gid, mid = make_guild(engine, f"juror{i}", trust=trust, treasury=treasury)
        jurors[gid] = mid
    return jurors


def submitted_bounty(engine, reward=300, client_stake=1000, guild_stake=500,
                     guild_treasury=2000, client_credits=5000):
    """Bounty posted, accepted and delivered: ready to be reviewed or disputed."""
    client_id = make_user(engine, "client", credits=client_credits)
    guild_id, master_id = make_guild(engine, "builders", treasury=guild_treasury)
    bounty = engine.bounties.post(client_id, "Landing page", reward, client_stake, guild_stake)
    engine.bounties.accept(master_id, bounty.id, guild_id)
    engine.bounties.submit_proof(master_id, bounty.id, "Deployed at the staging URL",
                                 links=["https://staging.example.com"])
    return SimpleNamespace(bounty_id=bounty.id, client_id=client_id, guild_id=guild_id,
                           master_id=master_id, reward=reward, client_stake=client_stake,
                           guild_stake=guild_stake)


def dispute_in_tribunal(engine, juror_count=5, **bounty_kwargs):
    """Dispute escalated to the tribunal with juror_count eligible guilds available."""
    world = submitted_bounty(engine, **bounty_kwargs)
    world.juror_masters = make_juror_guilds(engine, juror_count)
    world.dispute_id = engine.raise_dispute(world.client_id, world.bounty_id, EVIDENCE)
    engine.disputes.request_ai_analysis(world.client_id, world.dispute_id)
    world.jurors = engine.escalate_to_tribunal(world.client_id, world.dispute_id)
    return world


def vote_all(engine, world, votes, stake=1000):
    """Cast votes in juror order. Returns the receipts."""
    receipts = []
    for guild_id, vote in zip(world.jurors, votes):
        receipts.append(engine.cast_tribunal_vote(
            world.juror_masters[guild_id], world.dispute_id, guild_id, vote, stake))
    return receipts


def assert_conserved(engine):
    assert engine.ledger.total_value() == engine.ledger.external_net()
