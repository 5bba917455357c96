# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Record types for accounts, bounties, disputes and the ledger.

Rows are converted explicitly; nothing is populated implicitly from a
reference. Callers that need related records read them and assemble.
"""

import json
from dataclasses import dataclass, field
from urllib.parse import urlparse

from protocol import (
    MAX_EVIDENCE_ATTACHMENTS, AccountKind, ActivityType, BountyStatus,
    DisputeStatus, DisputeTier, GuildRank, Ruling, TxType, UserRank,
)
from tribunal.errors import ValidationError


def check_urls(urls, what: str) -> list[str]:
    """Attachments must be absolute http(s) URLs."""
    urls = list(urls or [])
    if len(urls) > MAX_EVIDENCE_ATTACHMENTS:
        raise ValidationError(f"At most {MAX_EVIDENCE_ATTACHMENTS} {what} allowed")
    for url in urls:
        if not isinstance(url, str):
            raise ValidationError(f"Invalid {what[:-1]} URL: {url!r}")
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Invalid {what[:-1]} URL: {url!r}")
    return [u.strip() for u in urls]


def check_evidence(text, images, links, min_chars: int) -> tuple[str, list[str], list[str]]:
    if not isinstance(text, str):
        raise ValidationError("Evidence text is required")
    text = text.strip()
    if len(text) < min_chars:
        raise ValidationError(f"Evidence must be at least {min_chars} characters")
    return text, check_urls(images, "images"), check_urls(links, "links")


@dataclass
class Account:
    """A user or a guild. Both hold balances, a trust score and a rank."""
    id: str
    kind: AccountKind
    name: str
    available_credits: int = 0
    staked_credits: int = 0
    trust_score: int = 0
    rank: UserRank | GuildRank = UserRank.ROOKIE
    client_rating: float = 0.7
    total_value_cleared: int = 0
    last_active: float = 0.0
    created_at: float = 0.0

    @property
    def total_value(self) -> int:
        return self.available_credits + self.staked_credits

    @property
    def is_guild(self) -> bool:
        return self.kind is AccountKind.GUILD

    @classmethod
    def from_row(cls, row) -> "Account":
        kind = AccountKind(row["kind"])
        rank_enum = GuildRank if kind is AccountKind.GUILD else UserRank
        return cls(
            id=row["id"],
            kind=kind,
            name=row["name"],
            available_credits=row["available_credits"],
            staked_credits=row["staked_credits"],
            trust_score=row["trust_score"],
            rank=rank_enum(row["rank"]),
            client_rating=row["client_rating"],
            total_value_cleared=row["total_value_cleared"],
            last_active=row["last_active"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "available_credits": self.available_credits,
            "staked_credits": self.staked_credits,
            "trust_score": self.trust_score,
            "rank": self.rank.value,
            "last_active": self.last_active,
        }


@dataclass
class GuildRoster:
    guild_id: str
    master_id: str
    officer_ids: set[str] = field(default_factory=set)
    member_ids: set[str] = field(default_factory=set)

    def all_ids(self) -> set[str]:
        return {self.master_id} | self.officer_ids | self.member_ids


@dataclass
class Evidence:
    """Evidence submitted by one side. Appending never changes tier or status."""
    text: str = ""
    images: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)

    def append(self, text: str, images: list[str], links: list[str]) -> None:
        self.text = f"{self.text}\n\n{text}" if self.text else text
        self.images.extend(images)
        self.links.extend(links)

    def to_dict(self) -> dict:
        return {"text": self.text, "images": list(self.images), "links": list(self.links)}

    @classmethod
    def from_dict(cls, d: dict) -> "Evidence":
        return cls(text=d.get("text", ""), images=list(d.get("images", [])), links=list(d.get("links", [])))


@dataclass
class Proof:
    text: str = ""
    images: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.images and not self.links

    def to_dict(self) -> dict:
        return {"text": self.text, "images": list(self.images), "links": list(self.links)}


@dataclass
class Bounty:
    id: str
    client_id: str
    title: str
    reward_credits: int
    client_stake: int
    guild_stake_required: int
    status: BountyStatus
    min_guild_trust: int = 0
    accepted_by_guild_id: str | None = None
    guild_stake_locked: int = 0
    dispute_id: str | None = None
    proof: Proof | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: float | None = None

    @classmethod
    def from_row(cls, row) -> "Bounty":
        proof = None
        if row["proof"]:
            d = json.loads(row["proof"])
            proof = Proof(text=d.get("text", ""), images=d.get("images", []), links=d.get("links", []))
        return cls(
            id=row["id"],
            client_id=row["client_id"],
            title=row["title"],
            reward_credits=row["reward_credits"],
            client_stake=row["client_stake"],
            guild_stake_required=row["guild_stake_required"],
            min_guild_trust=row["min_guild_trust"],
            status=BountyStatus(row["status"]),
            accepted_by_guild_id=row["accepted_by_guild_id"],
            guild_stake_locked=row["guild_stake_locked"],
            dispute_id=row["dispute_id"],
            proof=proof,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "title": self.title,
            "reward_credits": self.reward_credits,
            "client_stake": self.client_stake,
            "guild_stake_required": self.guild_stake_required,
            "min_guild_trust": self.min_guild_trust,
            "status": self.status.value,
            "accepted_by_guild_id": self.accepted_by_guild_id,
            "guild_stake_locked": self.guild_stake_locked,
            "dispute_id": self.dispute_id,
            "proof": self.proof.to_dict() if self.proof else None,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class TribunalVote:
    guild_id: str
    vote: Ruling
    staked_amount: int
    seq: int = 0
    cast_at: float = 0.0

    @classmethod
    def from_row(cls, row) -> "TribunalVote":
        return cls(
            guild_id=row["guild_id"],
            vote=Ruling(row["vote"]),
            staked_amount=row["staked_amount"],
            seq=row["seq"],
            cast_at=row["cast_at"],
        )

    def to_dict(self) -> dict:
        return {"guild_id": self.guild_id, "vote": self.vote.value, "staked_amount": self.staked_amount}


@dataclass
class Dispute:
    id: str
    bounty_id: str
    client_id: str
    guild_id: str
    tier: DisputeTier
    status: DisputeStatus
    client_evidence: Evidence
    guild_evidence: Evidence
    client_stake_at_risk: int
    guild_stake_at_risk: int
    reward_credits: int
    tribunal_jurors: list[str] = field(default_factory=list)
    tribunal_votes: list[TribunalVote] = field(default_factory=list)
    ai_suggestion: dict | None = None
    final_ruling: Ruling | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
    resolved_at: float | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status is DisputeStatus.RESOLVED

    @classmethod
    def from_row(cls, row, votes: list[TribunalVote] | None = None) -> "Dispute":
        return cls(
            id=row["id"],
            bounty_id=row["bounty_id"],
            client_id=row["client_id"],
            guild_id=row["guild_id"],
            tier=DisputeTier(row["tier"]),
            status=DisputeStatus(row["status"]),
            client_evidence=Evidence.from_dict(json.loads(row["client_evidence"])),
            guild_evidence=Evidence.from_dict(json.loads(row["guild_evidence"])),
            client_stake_at_risk=row["client_stake_at_risk"],
            guild_stake_at_risk=row["guild_stake_at_risk"],
            reward_credits=row["reward_credits"],
            tribunal_jurors=json.loads(row["tribunal_jurors"]),
            tribunal_votes=list(votes or []),
            ai_suggestion=json.loads(row["ai_suggestion"]) if row["ai_suggestion"] else None,
            final_ruling=Ruling(row["final_ruling"]) if row["final_ruling"] else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            resolved_at=row["resolved_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bounty_id": self.bounty_id,
            "client_id": self.client_id,
            "guild_id": self.guild_id,
            "tier": self.tier.value,
            "status": self.status.value,
            "client_evidence": self.client_evidence.to_dict(),
            "guild_evidence": self.guild_evidence.to_dict(),
            "client_stake_at_risk": self.client_stake_at_risk,
            "guild_stake_at_risk": self.guild_stake_at_risk,
            "reward_credits": self.reward_credits,
            "tribunal_jurors": list(self.tribunal_jurors),
            "tribunal_votes": [v.to_dict() for v in self.tribunal_votes],
            "ai_suggestion": self.ai_suggestion,
            "final_ruling": self.final_ruling.value if self.final_ruling else None,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable row of the transaction log: one balance change on one account."""
    id: int
    account_id: str
    type: TxType
    amount: int
    available_delta: int
    staked_delta: int
    available_after: int
    staked_after: int
    external: bool
    description: str
    bounty_id: str | None = None
    dispute_id: str | None = None
    created_at: float = 0.0

    @classmethod
    def from_row(cls, row) -> "LedgerEntry":
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            type=TxType(row["type"]),
            amount=row["amount"],
            available_delta=row["available_delta"],
            staked_delta=row["staked_delta"],
            available_after=row["available_after"],
            staked_after=row["staked_after"],
            external=bool(row["external"]),
            description=row["description"],
            bounty_id=row["bounty_id"],
            dispute_id=row["dispute_id"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type.value,
            "amount": self.amount,
            "available_after": self.available_after,
            "staked_after": self.staked_after,
            "description": self.description,
            "bounty_id": self.bounty_id,
            "dispute_id": self.dispute_id,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Activity:
    account_id: str
    type: ActivityType
    description: str
    impact_on_trust: int = 0
    impact_on_credits: int = 0
    bounty_id: str | None = None
    guild_id: str | None = None
    dispute_id: str | None = None
    created_at: float = 0.0

    @classmethod
    def from_row(cls, row) -> "Activity":
        return cls(
            account_id=row["account_id"],
            type=ActivityType(row["type"]),
            description=row["description"],
            impact_on_trust=row["impact_on_trust"],
            impact_on_credits=row["impact_on_credits"],
            bounty_id=row["bounty_id"],
            guild_id=row["guild_id"],
            dispute_id=row["dispute_id"],
            created_at=row["created_at"],
        )
