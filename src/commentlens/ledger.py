"""SQLite-backed monthly usage quota per caller.

Every operation runs in its own ``BEGIN IMMEDIATE`` transaction. SQLite
grants the write lock before the row is read, so concurrent charges for the
same caller are serialised and never observe the same pre-deduction counter.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from commentlens.errors import PersistenceError, QuotaExceeded
from commentlens.models import QuotaRecord, QuotaSnapshot

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS quotas (
    caller_id           TEXT PRIMARY KEY,
    label               TEXT NOT NULL DEFAULT '',
    subscription_status TEXT NOT NULL DEFAULT 'free',
    quota_limit         INTEGER NOT NULL,
    usage_count         INTEGER NOT NULL DEFAULT 0,
    quota_reset_date    TEXT NOT NULL,
    created_at          TEXT NOT NULL
);
"""

_COLUMNS = (
    "caller_id, label, subscription_status, quota_limit, "
    "usage_count, quota_reset_date, created_at"
)


def first_of_next_month(now: datetime) -> datetime:
    """Return midnight UTC on the first day of the month after *now*."""
    year, month = divmod(now.year * 12 + now.month, 12)
    return datetime(year, month + 1, 1, tzinfo=UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QuotaLedger:
    """Per-caller usage counter with atomic check, reset and deduct."""

    def __init__(
        self,
        db_path: Path,
        default_limit: int = 5,
        clock: Callable[[], datetime] = _utcnow,
        busy_timeout: float = 30.0,
    ) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._default_limit = default_limit
        self._clock = clock
        self._busy_timeout = busy_timeout
        self._init_db()

    # ── public ──────────────────────────────────────────────────────────

    def charge(self, caller_id: str, label: str = "") -> QuotaSnapshot:
        """Consume one usage unit and return the post-deduction snapshot.

        Raises :class:`QuotaExceeded` (with nothing written) when the caller
        has used up this period's allowance. Not idempotent.
        """
        with self._transaction() as con:
            record = self._load_current(con, caller_id, label)
            if record.usage_count >= record.quota_limit:
                # Raising inside the transaction rolls back any reset or insert.
                logger.warning(
                    "Quota exceeded for %s (%s): %d/%d",
                    caller_id, label or "-", record.usage_count, record.quota_limit,
                )
                raise QuotaExceeded(caller_id, record.snapshot())

            record.usage_count += 1
            self._save(con, record)

        logger.info(
            "Charged %s (%s): %d/%d used",
            caller_id, label or "-", record.usage_count, record.quota_limit,
        )
        return record.snapshot()

    def status(self, caller_id: str, label: str = "") -> QuotaSnapshot:
        """Return the current snapshot, applying a due reset, without charging."""
        with self._transaction() as con:
            record = self._load_current(con, caller_id, label)
            self._save(con, record)
        return record.snapshot()

    def set_subscription(
        self, caller_id: str, status: str, quota_limit: int
    ) -> QuotaSnapshot:
        """Move a caller to another tier. Usage in the current period is kept."""
        if quota_limit < 0:
            raise ValueError("quota_limit must be non-negative")
        with self._transaction() as con:
            record = self._load_current(con, caller_id, "")
            record.subscription_status = status
            record.quota_limit = quota_limit
            self._save(con, record)
        logger.info("Caller %s moved to '%s' (limit %d)", caller_id, status, quota_limit)
        return record.snapshot()

    # ── private ─────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        return sqlite3.connect(
            str(self._db_path), timeout=self._busy_timeout, isolation_level=None
        )

    def _init_db(self) -> None:
        try:
            con = self._connect()
            try:
                con.executescript(_SCHEMA)
            finally:
                con.close()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot initialise quota store: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            con = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Quota store unavailable: {exc}") from exc
        try:
            con.execute("BEGIN IMMEDIATE")
            yield con
            if con.in_transaction:
                con.commit()
        except sqlite3.Error as exc:
            if con.in_transaction:
                con.rollback()
            raise PersistenceError(f"Quota transaction failed: {exc}") from exc
        except BaseException:
            if con.in_transaction:
                con.rollback()
            raise
        finally:
            con.close()

    def _load_current(
        self, con: sqlite3.Connection, caller_id: str, label: str
    ) -> QuotaRecord:
        """Read (or create) the caller's record and apply a due reset."""
        now = self._clock()
        row = con.execute(
            f"SELECT {_COLUMNS} FROM quotas WHERE caller_id = ?", (caller_id,)
        ).fetchone()

        if row is None:
            record = QuotaRecord(
                caller_id=caller_id,
                label=label,
                quota_limit=self._default_limit,
                quota_reset_date=first_of_next_month(now),
                created_at=now,
            )
            self._insert(con, record)
            logger.info("Created quota record for %s (%s)", caller_id, label or "-")
            return record

        record = self._row_to_record(row)
        if label and record.label != label:
            record.label = label
        if record.quota_reset_date < now:
            # The stored limit is kept so paid tiers retain their allowance.
            record.usage_count = 0
            record.quota_reset_date = first_of_next_month(now)
            logger.info(
                "Reset quota for %s (%s); next reset %s",
                caller_id, record.label or "-", record.quota_reset_date.isoformat(),
            )
        return record

    @staticmethod
    def _insert(con: sqlite3.Connection, record: QuotaRecord) -> None:
        con.execute(
            f"INSERT INTO quotas ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.caller_id,
                record.label,
                record.subscription_status,
                record.quota_limit,
                record.usage_count,
                record.quota_reset_date.isoformat(),
                record.created_at.isoformat(),
            ),
        )

    @staticmethod
    def _save(con: sqlite3.Connection, record: QuotaRecord) -> None:
        con.execute(
            """
            UPDATE quotas
               SET label = ?, subscription_status = ?, quota_limit = ?,
                   usage_count = ?, quota_reset_date = ?
             WHERE caller_id = ?
            """,
            (
                record.label,
                record.subscription_status,
                record.quota_limit,
                record.usage_count,
                record.quota_reset_date.isoformat(),
                record.caller_id,
            ),
        )

    @staticmethod
    def _row_to_record(row: tuple) -> QuotaRecord:
        caller_id, label, status, limit, usage, reset_date, created_at = row
        return QuotaRecord(
            caller_id=caller_id,
            label=label,
            subscription_status=status,
            quota_limit=limit,
            usage_count=usage,
            quota_reset_date=datetime.fromisoformat(reset_date),
            created_at=datetime.fromisoformat(created_at),
        )
