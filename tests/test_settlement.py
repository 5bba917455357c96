"""Tests for tribunal/settlement.py -- settlement plans and stake redistribution."""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest

from protocol import BountyStatus, DisputeStatus, DisputeTier, Ruling, TxType
from tribunal.errors import ValidationError
from tribunal.models import Dispute, Evidence, TribunalVote
from tribunal.settlement import SplitShares, plan, proportional_shares


def make_dispute(client_stake=1000, guild_stake=500, reward=300):
    return Dispute(
        id="dsp_1", bounty_id="bty_1", client_id="usr_client", guild_id="gld_party",
        tier=DisputeTier.TRIBUNAL, status=DisputeStatus.IN_TRIBUNAL,
        client_evidence=Evidence("claim"), guild_evidence=Evidence(),
        client_stake_at_risk=client_stake, guild_stake_at_risk=guild_stake,
        reward_credits=reward,
    )


def make_votes(*pairs):
    return [TribunalVote(guild_id=g, vote=Ruling(v), staked_amount=s, seq=i + 1)
            for i, (g, v, s) in enumerate(pairs)]


def net(result, account_id):
    """Change in an account's available credits from a plan's movements."""
    total = 0
    for m in result.movements:
        if m.op == "release" and m.account_id == account_id:
            total += m.amount
        elif m.op == "transfer_stake" and m.to_id == account_id:
            total += m.amount
        elif m.op == "pay":
            if m.to_id == account_id:
                total += m.amount
            if m.account_id == account_id:
                total -= m.amount
    return total


# --- SplitShares ---

class TestSplitShares:
    def test_default_even(self):
        assert SplitShares().divide(300) == (150, 150)

    def test_remainder_to_guild(self):
        assert SplitShares(33, 67).divide(101) == (33, 68)

    def test_must_sum_to_100(self):
        with pytest.raises(ValidationError):
            SplitShares(60, 50)

    def test_rejects_non_integer(self):
        with pytest.raises(ValidationError):
            SplitShares(50.0, 50)

    def test_normalize_scales(self):
        assert SplitShares.normalize(30, 30) == SplitShares(50, 50)
        assert SplitShares.normalize(1, 3) == SplitShares(25, 75)

    def test_normalize_falls_back(self):
        assert SplitShares.normalize(-5, 10) == SplitShares()
        assert SplitShares.normalize(0, 0) == SplitShares()
        assert SplitShares.normalize("lots", None) == SplitShares()


# --- proportional_shares ---

class TestProportionalShares:
    def test_sums_to_pool(self):
        shares = proportional_shares(2000, {"a": 1000, "b": 1000, "c": 1000})
        assert sum(shares.values()) == 2000
        assert sorted(shares.values()) == [666, 667, 667]

    def test_remainder_to_lowest_id_on_ties(self):
        shares = proportional_shares(2000, {"c": 1000, "a": 1000, "b": 1000})
        assert shares == {"a": 667, "b": 667, "c": 666}

    def test_weighted(self):
        assert proportional_shares(900, {"a": 1000, "b": 2000}) == {"a": 300, "b": 600}

    def test_largest_remainder_wins(self):
        shares = proportional_shares(10, {"a": 1, "b": 2})
        assert shares == {"a": 3, "b": 7}

    def test_empty_pool(self):
        assert proportional_shares(0, {"a": 5}) == {"a": 0}


# --- plan ---

class TestPlanClientWins:
    def test_client_recovers_both_stakes(self):
        result = plan(make_dispute(), [], Ruling.CLIENT_WINS)
        assert result.bounty_status is BountyStatus.FAILED
        assert result.client_stake_payout == 1500
        assert result.guild_stake_payout == 0
        assert result.client_reward == 300
        assert result.guild_trust_penalty == 50
        assert net(result, "usr_client") == 1500
        types = [(m.op, m.tx_type) for m in result.movements]
        assert types == [
            ("release", TxType.STAKE_RELEASE),
            ("transfer_stake", TxType.DISPUTE_LOSS),
        ]

    def test_zero_guild_stake_skipped(self):
        result = plan(make_dispute(guild_stake=0), [], Ruling.CLIENT_WINS)
        assert all(m.op == "release" for m in result.movements)


class TestPlanGuildWins:
    def test_guild_takes_client_stake_and_reward(self):
        result = plan(make_dispute(), [], Ruling.GUILD_WINS)
        assert result.bounty_status is BountyStatus.COMPLETED
        assert result.guild_stake_payout == 1500
        assert result.guild_reward == 300
        assert result.guild_trust_penalty == 0
        assert net(result, "gld_party") == 1800
        assert net(result, "usr_client") == -300
        paid = [m for m in result.movements if m.op == "pay"]
        assert [(m.account_id, m.to_id, m.amount) for m in paid] == [("usr_client", "gld_party", 300)]


class TestPlanSplit:
    def test_even_split(self):
        result = plan(make_dispute(), [], Ruling.SPLIT)
        assert result.bounty_status is BountyStatus.COMPLETED
        assert (result.client_reward, result.guild_reward) == (150, 150)
        assert net(result, "usr_client") == 850
        assert net(result, "gld_party") == 650

    def test_custom_shares(self):
        result = plan(make_dispute(reward=1000), [], Ruling.SPLIT, SplitShares(30, 70))
        assert (result.client_reward, result.guild_reward) == (300, 700)


class TestJurorPayouts:
    def test_losers_fund_winners(self):
        votes = make_votes(("j1", "ClientWins", 1000), ("j2", "ClientWins", 1000),
                           ("j3", "GuildWins", 1000), ("j4", "Split", 1000),
                           ("j5", "ClientWins", 1000))
        result = plan(make_dispute(), votes, Ruling.CLIENT_WINS)
        assert result.juror_payouts == {"j1": 1667, "j2": 1667, "j5": 1666, "j3": 0, "j4": 0}
        forfeits = [m for m in result.movements if m.tx_type is TxType.JUROR_FORFEIT]
        assert sum(m.amount for m in forfeits) == 2000
        assert {m.account_id for m in forfeits} == {"j3", "j4"}
        assert all(m.to_type is TxType.JUROR_REWARD for m in forfeits)

    def test_unequal_stakes(self):
        votes = make_votes(("j1", "GuildWins", 3000), ("j2", "GuildWins", 1000),
                           ("j3", "ClientWins", 2000))
        result = plan(make_dispute(), votes, Ruling.GUILD_WINS)
        assert result.juror_payouts == {"j1": 4500, "j2": 1500, "j3": 0}

    def test_unanimous_refunds_everyone(self):
        votes = make_votes(*[(f"j{i}", "Split", 1000) for i in range(5)])
        result = plan(make_dispute(), votes, Ruling.SPLIT)
        assert set(result.juror_payouts.values()) == {1000}
        assert not [m for m in result.movements if m.tx_type is TxType.JUROR_FORFEIT]

    def test_tie_without_split_voters_refunds(self):
        votes = make_votes(("j1", "ClientWins", 1000), ("j2", "ClientWins", 1000),
                           ("j3", "GuildWins", 1000), ("j4", "GuildWins", 1000))
        result = plan(make_dispute(), votes, Ruling.SPLIT)
        assert result.juror_payouts == {"j1": 1000, "j2": 1000, "j3": 1000, "j4": 1000}
        juror_moves = [m for m in result.movements if m.account_id.startswith("j")]
        assert len(juror_moves) == 4
        assert all(m.op == "release" for m in juror_moves)

    def test_value_conserved_across_plan(self):
        votes = make_votes(("j1", "Split", 1200), ("j2", "GuildWins", 1000),
                           ("j3", "Split", 1000), ("j4", "ClientWins", 1700),
                           ("j5", "Split", 1100))
        result = plan(make_dispute(), votes, Ruling.SPLIT)
        staked = 1000 + 500 + sum(v.staked_amount for v in votes)
        unlocked = sum(m.amount for m in result.movements if m.op != "pay")
        assert unlocked == staked
