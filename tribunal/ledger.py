# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""Escrow ledger: the only code that mutates account balances.

Every balance change appends exactly one row to the transaction log inside the
same database transaction as the balance update, so replaying the log always
reproduces current balances. Credits enter or leave the system only through
external entries (credit/debit); everything else moves value between accounts
or between an account's available and staked buckets.

`amount` on a log entry is signed: the change in the account's total value for
credits, debits and transfers; the moved quantity for lock/release.
"""

from dataclasses import dataclass

from protocol import TxType
from tribunal.db import Database
from tribunal.errors import InsufficientFunds, InvariantViolation, NotFound, ValidationError
from tribunal.log import get_logger
from tribunal.models import LedgerEntry

log = get_logger(__name__)


@dataclass(frozen=True)
class Balance:
    available: int
    staked: int

    @property
    def total(self) -> int:
        return self.available + self.staked


def _check_amount(amount) -> int:
    # bool is an int subclass; True credits are a bug, not a value
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Amount must be an integer, got {amount!r}")
    if amount < 0:
        raise ValidationError(f"Amount must be non-negative, got {amount}")
    return amount


class EscrowLedger:
    """Balances, stakes and the append-only transaction log."""

    def __init__(self, db: Database):
        self.db = db

    # --- core ---

    def _apply(self, account_id: str, tx_type: TxType, amount: int,
               available_delta: int, staked_delta: int, *, external: bool = False,
               description: str = "", bounty_id: str | None = None,
               dispute_id: str | None = None) -> LedgerEntry:
        with self.db.transaction():
            row = self.db.fetchone(
                "SELECT available_credits, staked_credits FROM accounts WHERE id = ?",
                (account_id,),
            )
            if not row:
                raise NotFound(f"Account {account_id} not found", account_id=account_id)
            available = row["available_credits"] + available_delta
            staked = row["staked_credits"] + staked_delta
            if available < 0:
                raise InsufficientFunds(account_id, -available_delta, row["available_credits"])
            if staked < 0:
                log.critical("ledger.stake_underflow", account_id=account_id,
                             staked=row["staked_credits"], release=-staked_delta,
                             tx_type=tx_type.value)
                raise InvariantViolation(
                    f"Release of {-staked_delta} exceeds staked {row['staked_credits']} on {account_id}",
                    account_id=account_id,
                )
            now = self.db.now()
            self.db.execute(
                "UPDATE accounts SET available_credits = ?, staked_credits = ? WHERE id = ?",
                (available, staked, account_id),
            )
            cursor = self.db.execute(
                """INSERT INTO transactions
                   (account_id, type, amount, available_delta, staked_delta,
                    available_after, staked_after, external, bounty_id, dispute_id,
                    description, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (account_id, tx_type.value, amount, available_delta, staked_delta,
                 available, staked, int(external), bounty_id, dispute_id,
                 description, now),
            )
            return LedgerEntry(
                id=cursor.lastrowid, account_id=account_id, type=tx_type, amount=amount,
                available_delta=available_delta, staked_delta=staked_delta,
                available_after=available, staked_after=staked, external=external,
                description=description, bounty_id=bounty_id, dispute_id=dispute_id,
                created_at=now,
            )

    # --- external flows ---

    def credit(self, account_id: str, amount: int, tx_type: TxType = TxType.PURCHASE,
               description: str = "", **refs) -> LedgerEntry:
        """Add credits from outside the system (welcome bonus, purchase)."""
        amount = _check_amount(amount)
        return self._apply(account_id, tx_type, amount, amount, 0,
                           external=True, description=description or "Credits added", **refs)

    def debit(self, account_id: str, amount: int, tx_type: TxType = TxType.WITHDRAWAL,
              description: str = "", **refs) -> LedgerEntry:
        """Remove credits from the system. Raises InsufficientFunds."""
        amount = _check_amount(amount)
        return self._apply(account_id, tx_type, -amount, -amount, 0,
                           external=True, description=description or "Credits withdrawn", **refs)

    # --- stakes ---

    def lock_stake(self, account_id: str, amount: int, tx_type: TxType = TxType.BOUNTY_STAKE,
                   description: str = "", **refs) -> LedgerEntry:
        """Move available credits into the staked bucket. Raises InsufficientFunds."""
        amount = _check_amount(amount)
        return self._apply(account_id, tx_type, amount, -amount, amount,
                           description=description or f"Locked {amount} credits", **refs)

    def release_stake(self, account_id: str, amount: int, tx_type: TxType = TxType.STAKE_RELEASE,
                      description: str = "", **refs) -> LedgerEntry:
        """Return staked credits to available.

        Releasing more than is staked is a bookkeeping bug: raises
        InvariantViolation and is never retried.
        """
        amount = _check_amount(amount)
        return self._apply(account_id, tx_type, amount, amount, -amount,
                           description=description or f"Released {amount} credits", **refs)

    def transfer_stake(self, from_id: str, to_id: str, amount: int,
                       tx_type: TxType = TxType.DISPUTE_LOSS,
                       to_type: TxType | None = None,
                       description: str = "", **refs) -> tuple[LedgerEntry, LedgerEntry]:
        """Move staked credits of one account into another's available balance."""
        amount = _check_amount(amount)
        if from_id == to_id:
            raise ValidationError("Cannot transfer stake to the same account")
        to_type = to_type or tx_type
        with self.db.transaction():
            out = self._apply(from_id, tx_type, -amount, 0, -amount,
                              description=description or f"Stake of {amount} to {to_id}", **refs)
            inn = self._apply(to_id, to_type, amount, amount, 0,
                              description=description or f"Stake of {amount} from {from_id}", **refs)
        return out, inn

    def transfer(self, from_id: str, to_id: str, amount: int,
                 tx_type: TxType = TxType.GUILD_DEPOSIT,
                 description: str = "", **refs) -> tuple[LedgerEntry, LedgerEntry]:
        """Move available credits between accounts (e.g. guild treasury deposit)."""
        amount = _check_amount(amount)
        if from_id == to_id:
            raise ValidationError("Cannot transfer to the same account")
        with self.db.transaction():
            out = self._apply(from_id, tx_type, -amount, -amount, 0,
                              description=description or f"Transfer of {amount} to {to_id}", **refs)
            inn = self._apply(to_id, tx_type, amount, amount, 0,
                              description=description or f"Transfer of {amount} from {from_id}", **refs)
        return out, inn

    # --- queries ---

    def balance(self, account_id: str) -> Balance:
        row = self.db.fetchone(
            "SELECT available_credits, staked_credits FROM accounts WHERE id = ?",
            (account_id,),
        )
        if not row:
            raise NotFound(f"Account {account_id} not found", account_id=account_id)
        return Balance(row["available_credits"], row["staked_credits"])

    def history(self, account_id: str, limit: int | None = None,
                dispute_id: str | None = None) -> list[LedgerEntry]:
        """Transaction log for an account, oldest first."""
        sql = "SELECT * FROM transactions WHERE account_id = ?"
        params: list = [account_id]
        if dispute_id is not None:
            sql += " AND dispute_id = ?"
            params.append(dispute_id)
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [LedgerEntry.from_row(r) for r in self.db.fetchall(sql, params)]

    def reconcile(self, account_id: str) -> Balance:
        """Rebuild the account's balances from its log and compare.

        Raises InvariantViolation if the log and the stored balances disagree,
        or if any entry's after-values break the running total.
        """
        with self.db.transaction():
            current = self.balance(account_id)
            available = staked = 0
            for entry in self.history(account_id):
                available += entry.available_delta
                staked += entry.staked_delta
                if (available, staked) != (entry.available_after, entry.staked_after):
                    log.critical("ledger.reconcile_broken_chain", account_id=account_id, entry_id=entry.id)
                    raise InvariantViolation(
                        f"Ledger entry {entry.id} for {account_id} breaks the running balance",
                        account_id=account_id, entry_id=entry.id,
                    )
        rebuilt = Balance(available, staked)
        if rebuilt != current:
            log.critical("ledger.reconcile_mismatch", account_id=account_id,
                         stored=current, rebuilt=rebuilt)
            raise InvariantViolation(
                f"Stored balance {current} for {account_id} does not match log {rebuilt}",
                account_id=account_id,
            )
        return rebuilt

    def total_value(self) -> int:
        """Sum of available + staked across every account."""
        row = self.db.fetchone(
            "SELECT COALESCE(SUM(available_credits + staked_credits), 0) AS total FROM accounts"
        )
        return row["total"]

    def external_net(self) -> int:
        """Net credits that entered the system through external entries."""
        row = self.db.fetchone(
            "SELECT COALESCE(SUM(available_delta + staked_delta), 0) AS net "
            "FROM transactions WHERE external = 1"
        )
        return row["net"]
