# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Engine: the boundary operations, with every component wired to one store."""

import random
from concurrent.futures import Future, ThreadPoolExecutor

from protocol import Ruling
from tribunal.accounts import AccountStore
from tribunal.arbiter import Arbiter, ArbiterAnalysis
from tribunal.bounties import BountyBoard
from tribunal.coordinator import TribunalCoordinator, VoteReceipt
from tribunal.db import Database
from tribunal.decay import TrustDecayScheduler
from tribunal.disputes import DisputeStateMachine
from tribunal.ledger import EscrowLedger
from tribunal.log import get_logger
from tribunal.models import Dispute, LedgerEntry
from tribunal.notifications import NotificationStore
from tribunal.settlement import SettlementEngine
from tribunal.trust import TrustService, TrustUpdate

log = get_logger(__name__)


class Engine:
    """Trust and dispute resolution engine.

    async_recompute: recompute trust after settlement on a worker thread.
    Tests pass False to get the updated scores before the call returns.
    """

    def __init__(self, db_path: str = ":memory:", arbiter: Arbiter | None = None,
                 rng: random.Random | None = None, clock=None,
                 async_recompute: bool = True, max_workers: int = 2):
        self.db = Database(db_path) if clock is None else Database(db_path, clock=clock)
        self.ledger = EscrowLedger(self.db)
        self.notifications = NotificationStore(self.db)
        self.accounts = AccountStore(self.db, self.ledger)
        self.bounties = BountyBoard(self.db, self.accounts, self.ledger, self.notifications)
        self.disputes = DisputeStateMachine(self.db, self.accounts, self.bounties, self.notifications)
        self.trust = TrustService(self.db, self.accounts, self.bounties, self.disputes,
                                  self.notifications)
        self.settlement = SettlementEngine(self.db, self.ledger, self.accounts, self.bounties,
                                           self.notifications, penalize=self.trust.apply_penalty)
        self.coordinator = TribunalCoordinator(self.db, self.accounts, self.ledger, self.disputes,
                                               self.settlement, rng=rng,
                                               on_settled=self._after_settlement)
        self.decay = TrustDecayScheduler(self.db, self.accounts, self.notifications)
        self.arbiter = arbiter or Arbiter()
        self.async_recompute = async_recompute
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="trust") if async_recompute else None
        self._pending: list[Future] = []

    # --- boundary operations ---

    def raise_dispute(self, actor_id: str, bounty_id: str, evidence_text: str,
                      evidence_images: list[str] | None = None,
                      evidence_links: list[str] | None = None) -> str:
        return self.disputes.raise_dispute(actor_id, bounty_id, evidence_text,
                                           evidence_images, evidence_links).id

    def submit_evidence(self, actor_id: str, dispute_id: str, party_role, text: str,
                        images: list[str] | None = None, links: list[str] | None = None) -> dict:
        return self.disputes.submit_evidence(actor_id, dispute_id, party_role, text, images, links)

    async def request_ai_analysis(self, actor_id: str, dispute_id: str) -> ArbiterAnalysis:
        """Move to the AI tier and return the arbiter's advisory suggestion."""
        self.disputes.request_ai_analysis(actor_id, dispute_id)
        analysis = await self.arbiter.analyze(self.disputes.snapshot(dispute_id))
        self.disputes.record_ai_suggestion(dispute_id, analysis.to_dict())
        log.info("dispute.ai_suggestion", dispute_id=dispute_id, ruling=analysis.ruling.value,
                 confidence=analysis.confidence_score, model=analysis.model)
        return analysis

    def escalate_to_tribunal(self, actor_id: str, dispute_id: str) -> list[str]:
        return self.disputes.escalate(actor_id, dispute_id, self.coordinator.select_jurors)

    def cast_tribunal_vote(self, actor_id: str, dispute_id: str, juror_guild_id: str,
                           vote, stake_amount: int) -> VoteReceipt:
        return self.coordinator.cast_vote(actor_id, dispute_id, juror_guild_id, vote, stake_amount)

    def get_dispute_state(self, dispute_id: str) -> dict:
        return self.disputes.snapshot(dispute_id)

    def recompute_trust(self, account_id: str) -> TrustUpdate:
        return self.trust.recompute(account_id)

    def retry_settlement(self, dispute_id: str) -> Ruling | None:
        """Re-attempt settlement for a dispute whose votes are all in."""
        return self.coordinator.finalize(dispute_id)

    # --- supporting queries ---

    def transactions(self, account_id: str, limit: int | None = None) -> list[LedgerEntry]:
        self.accounts.get(account_id)
        return self.ledger.history(account_id, limit=limit)

    # --- post-settlement ---

    def _after_settlement(self, dispute: Dispute, ruling: Ruling) -> None:
        # A penalized guild keeps its direct deduction until its next recompute
        targets = [dispute.client_id]
        if ruling is not Ruling.CLIENT_WINS:
            targets.append(dispute.guild_id)
        if self._executor is None:
            self._recompute_many(targets)
        else:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(self._executor.submit(self._recompute_many, targets))

    def _recompute_many(self, account_ids: list[str]) -> None:
        for account_id in account_ids:
            try:
                self.trust.recompute(account_id)
            except Exception:
                log.exception("trust.recompute_failed", account_id=account_id)

    def wait_idle(self, timeout: float | None = None) -> None:
        """Block until queued trust recomputations finish."""
        for f in list(self._pending):
            f.result(timeout)
        self._pending = []

    def close(self) -> None:
        self.decay.stop()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.db.close()
