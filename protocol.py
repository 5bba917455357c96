# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Shared constants and enums for the guild tribunal engine.

All modules import from here to avoid circular dependencies.
"""

import os
from enum import Enum

# --- Engine Constants ---

# Trust scores live in [0, 1000]
TRUST_MIN = 0
TRUST_MAX = 1000
DEFAULT_USER_TRUST = 500
DEFAULT_GUILD_TRUST = 500
DEFAULT_CLIENT_RATING = 0.7

# Credits granted when a user account is opened (external to the ledger)
WELCOME_BONUS = 1000

# Evidence rules
MIN_DISPUTE_EVIDENCE_CHARS = 100
MIN_FOLLOWUP_EVIDENCE_CHARS = 50
MAX_EVIDENCE_ATTACHMENTS = 20

# Bounty rules
MIN_BOUNTY_REWARD = 100

# Tribunal rules
JUROR_COUNT = 5
JUROR_MIN_TRUST = 500
MIN_TRIBUNAL_STAKE = 1000

# Punitive deduction applied to a guild that loses to its client
GUILD_LOSS_TRUST_PENALTY = 50

# Trust impact recorded on rank change activities
RANK_CHANGE_TRUST_IMPACT = 10

# Inactivity decay: 1 point per day past the grace window, capped, floored
DECAY_GRACE_DAYS = 30
DECAY_POINTS_PER_DAY = 1
DECAY_MAX_POINTS = 50
DECAY_FLOOR = 500
DECAY_INTERVAL_SECONDS = int(os.environ.get("TRIBUNAL_DECAY_INTERVAL", str(24 * 3600)))

# Activity window feeding the trust formulas
ACTIVITY_WINDOW_DAYS = 30

# Notifications expire after a week unless the sender says otherwise
NOTIFICATION_TTL_SECONDS = 7 * 24 * 3600

# Arbiter (advisory LLM) defaults
ARBITER_API_URL = os.environ.get("ARBITER_API_URL", "https://api.groq.com/openai/v1/chat/completions")
ARBITER_MODEL = os.environ.get("ARBITER_MODEL", "mixtral-8x7b-32768")
ARBITER_TIMEOUT = 60  # seconds


# --- Accounts ---

class AccountKind(Enum):
    USER = "User"
    GUILD = "Guild"


class UserRank(Enum):
    ROOKIE = "Rookie"
    VETERAN = "Veteran"
    ELITE = "Elite"
    MASTER = "Master"
    LEGENDARY = "Legendary"


class GuildRank(Enum):
    DEVELOPING = "Developing"
    ESTABLISHED = "Established"
    VETERAN = "Veteran"
    ELITE = "Elite"
    LEGENDARY = "Legendary"


# Descending: first threshold the score meets wins
USER_RANK_THRESHOLDS = (
    (UserRank.LEGENDARY, 900),
    (UserRank.MASTER, 750),
    (UserRank.ELITE, 600),
    (UserRank.VETERAN, 400),
    (UserRank.ROOKIE, 0),
)

GUILD_RANK_THRESHOLDS = (
    (GuildRank.LEGENDARY, 900),
    (GuildRank.ELITE, 750),
    (GuildRank.VETERAN, 600),
    (GuildRank.ESTABLISHED, 400),
    (GuildRank.DEVELOPING, 0),
)

JUROR_ELIGIBLE_RANKS = {GuildRank.VETERAN, GuildRank.ELITE, GuildRank.LEGENDARY}


class GuildRole(Enum):
    MASTER = "master"
    OFFICER = "officer"
    MEMBER = "member"


# Weight of a user's guild role in the trust formula
ROLE_WEIGHTS = {
    GuildRole.MASTER: 1.0,
    GuildRole.OFFICER: 0.8,
    GuildRole.MEMBER: 0.6,
    None: 0.5,
}


# --- Bounty State Machine ---

class BountyStatus(Enum):
    OPEN = "Open"
    ACCEPTED = "Accepted"
    IN_PROGRESS = "InProgress"
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "UnderReview"
    DISPUTED = "Disputed"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


BOUNTY_TRANSITIONS = {
    BountyStatus.OPEN: {BountyStatus.ACCEPTED, BountyStatus.CANCELLED},
    BountyStatus.ACCEPTED: {BountyStatus.IN_PROGRESS, BountyStatus.SUBMITTED},
    BountyStatus.IN_PROGRESS: {BountyStatus.SUBMITTED},
    BountyStatus.SUBMITTED: {BountyStatus.COMPLETED, BountyStatus.UNDER_REVIEW, BountyStatus.DISPUTED},
    BountyStatus.UNDER_REVIEW: {BountyStatus.COMPLETED, BountyStatus.DISPUTED},
    BountyStatus.DISPUTED: {BountyStatus.COMPLETED, BountyStatus.FAILED},
    BountyStatus.COMPLETED: set(),
    BountyStatus.FAILED: set(),
    BountyStatus.CANCELLED: set(),
}

# Statuses during which a guild's stake stays locked
STAKE_LOCKED_STATUSES = {
    BountyStatus.ACCEPTED,
    BountyStatus.IN_PROGRESS,
    BountyStatus.SUBMITTED,
    BountyStatus.UNDER_REVIEW,
    BountyStatus.DISPUTED,
}

DISPUTABLE_STATUSES = {BountyStatus.SUBMITTED, BountyStatus.UNDER_REVIEW}


# --- Dispute State Machine ---

class DisputeTier(Enum):
    NEGOTIATION = "Negotiation"
    AI_ARBITER = "AIArbiter"
    TRIBUNAL = "Tribunal"


class DisputeStatus(Enum):
    OPEN = "Open"
    AI_ANALYSIS = "AIAnalysis"
    IN_TRIBUNAL = "InTribunal"
    RESOLVED = "Resolved"


DISPUTE_TRANSITIONS = {
    DisputeStatus.OPEN: {DisputeStatus.AI_ANALYSIS},
    DisputeStatus.AI_ANALYSIS: {DisputeStatus.IN_TRIBUNAL},
    DisputeStatus.IN_TRIBUNAL: {DisputeStatus.RESOLVED},
    DisputeStatus.RESOLVED: set(),
}

# Tier a dispute sits in while holding each non-terminal status
STATUS_TIERS = {
    DisputeStatus.OPEN: DisputeTier.NEGOTIATION,
    DisputeStatus.AI_ANALYSIS: DisputeTier.AI_ARBITER,
    DisputeStatus.IN_TRIBUNAL: DisputeTier.TRIBUNAL,
}


class PartyRole(Enum):
    CLIENT = "client"
    GUILD = "guild"


# --- Rulings ---

class Ruling(Enum):
    CLIENT_WINS = "ClientWins"
    GUILD_WINS = "GuildWins"
    SPLIT = "Split"


class RankTransition(Enum):
    PROMOTED = "Promoted"
    DEMOTED = "Demoted"
    UNCHANGED = "Unchanged"


# --- Ledger ---

class TxType(Enum):
    WELCOME_BONUS = "WelcomeBonus"
    PURCHASE = "Purchase"
    WITHDRAWAL = "Withdrawal"
    GUILD_DEPOSIT = "GuildDeposit"
    BOUNTY_STAKE = "BountyStake"
    BOUNTY_REWARD = "BountyReward"
    BOUNTY_REFUND = "BountyRefund"
    STAKE_RELEASE = "StakeRelease"
    TRIBUNAL_STAKE = "TribunalStake"
    DISPUTE_WIN = "DisputeWin"
    DISPUTE_LOSS = "DisputeLoss"
    JUROR_REWARD = "JurorReward"
    JUROR_FORFEIT = "JurorForfeit"


# --- Activity History ---

class ActivityType(Enum):
    ACCOUNT_CREATED = "AccountCreated"
    BOUNTY_POSTED = "BountyPosted"
    BOUNTY_ACCEPTED = "BountyAccepted"
    BOUNTY_SUBMITTED = "BountySubmitted"
    BOUNTY_COMPLETED = "BountyCompleted"
    DISPUTE_RAISED = "DisputeRaised"
    DISPUTE_RESOLVED = "DisputeResolved"
    GUILD_JOINED = "GuildJoined"
    TRIBUNAL_VOTE = "TribunalVote"
    RANK_UP = "RankUp"
    RANK_DOWN = "RankDown"
    TRUST_PENALTY = "TrustPenalty"
    TRUST_DECAY = "TrustDecay"


# --- Notifications ---

class NotificationType(Enum):
    BOUNTY_ACCEPTED = "bounty_accepted"
    BOUNTY_SUBMITTED = "bounty_submitted"
    BOUNTY_COMPLETED = "bounty_completed"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_ESCALATED = "dispute_escalated"
    DISPUTE_RESOLVED = "dispute_resolved"
    TRIBUNAL_VOTE_NEEDED = "tribunal_vote_needed"
    RANK_CHANGED = "rank_changed"
