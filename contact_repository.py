"""
Contact store used by the identity engine.

The engine only talks to ``ContactRepository``. Groups are never cached here:
every call reads or writes the ``Contact`` table directly, and every result
list comes back ordered by ``(createdAt, id)``.
"""
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from db_models import PRIMARY, ContactRecord
from db_setup import get_db_connection
from errors import StaleContactError, StorageError

logger = logging.getLogger(__name__)

# Only these columns may change after a contact is created
MUTABLE_COLUMNS = frozenset({"linkPrecedence", "linkedId"})


@dataclass(frozen=True)
class ContactFilter:
    """OR of exact-match clauses. Unset fields take no part."""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    ids: tuple[int, ...] = ()
    linked_ids: tuple[int, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "ids", tuple(sorted(set(self.ids))))
        object.__setattr__(self, "linked_ids", tuple(sorted(set(self.linked_ids))))

    @classmethod
    def group(cls, primary_id: int) -> "ContactFilter":
        """The primary itself plus everything linked to it."""
        return cls(ids=(primary_id,), linked_ids=(primary_id,))

    def to_sql(self) -> tuple[str, list]:
        clauses = []
        params: list = []
        if self.email is not None:
            clauses.append("email = ?")
            params.append(self.email)
        if self.phone_number is not None:
            clauses.append("phoneNumber = ?")
            params.append(self.phone_number)
        if self.ids:
            clauses.append(f"id IN ({', '.join('?' for _ in self.ids)})")
            params.extend(self.ids)
        if self.linked_ids:
            clauses.append(f"linkedId IN ({', '.join('?' for _ in self.linked_ids)})")
            params.extend(self.linked_ids)
        if not clauses:
            raise ValueError("ContactFilter needs at least one clause")
        return " OR ".join(clauses), params


@dataclass(frozen=True)
class UpdateMany:
    """A bulk write intent, applied by ``ContactRepository.transaction``."""
    where: ContactFilter
    patch: dict = field(default_factory=dict)

    def __post_init__(self):
        unknown = set(self.patch) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not self.patch:
            raise ValueError("UpdateMany needs a non-empty patch")


class ContactRepository(ABC):
    """Read/write contract the identity engine depends on."""

    @abstractmethod
    def find_many(self, where: ContactFilter) -> list[ContactRecord]:
        """Contacts matching any clause of ``where``, oldest first."""
        ...

    @abstractmethod
    def create(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        link_precedence: str = PRIMARY,
        linked_id: Optional[int] = None,
    ) -> ContactRecord:
        """Insert a contact with a fresh id and the current timestamp.

        A ``linked_id`` must name a current primary, otherwise
        ``StaleContactError`` is raised and nothing is inserted.
        """
        ...

    @abstractmethod
    def transaction(self, writes: Sequence[UpdateMany], primaries: Sequence[int] = ()) -> int:
        """Apply every write or none of them. Returns rows touched.

        Every id in ``primaries`` must still be a primary when the write lock
        is held, otherwise nothing is written and ``StaleContactError`` is raised.
        """
        ...

    def update_many(self, where: ContactFilter, patch: dict) -> int:
        return self.transaction([UpdateMany(where, patch)])


def _timestamp(value: Optional[datetime] = None) -> str:
    """UTC ISO-8601 text, so stored timestamps sort chronologically."""
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteContactRepository(ContactRepository):
    """
    ``ContactRepository`` over the SQLite ``Contact`` table.

    Each call opens its own connection and closes it before returning,
    including when the call fails.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def find_many(self, where: ContactFilter) -> list[ContactRecord]:
        clause, params = where.to_sql()
        query = f"SELECT * FROM Contact WHERE {clause} ORDER BY createdAt ASC, id ASC"
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Contact lookup failed: {exc}") from exc
        finally:
            conn.close()
        return [ContactRecord(**dict(row)) for row in rows]

    def create(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        link_precedence: str = PRIMARY,
        linked_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> ContactRecord:
        now = _timestamp(created_at)
        conn = get_db_connection(self.db_path, autocommit=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
            if linked_id is not None:
                self._check_primaries(conn, [linked_id])
            cursor = conn.execute("""
                INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (phone_number, email, linked_id, link_precedence, now, now))
            row = conn.execute("SELECT * FROM Contact WHERE id = ?", (cursor.lastrowid,)).fetchone()
            conn.execute("COMMIT")
        except StaleContactError:
            self._rollback(conn)
            raise
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise StorageError(f"Contact insert failed: {exc}") from exc
        finally:
            conn.close()
        return ContactRecord(**dict(row))

    def transaction(self, writes: Sequence[UpdateMany], primaries: Sequence[int] = ()) -> int:
        if not writes:
            return 0
        conn = get_db_connection(self.db_path, autocommit=True)
        touched = 0
        try:
            # IMMEDIATE takes the write lock up front so overlapping merges serialize
            conn.execute("BEGIN IMMEDIATE")
            if primaries:
                self._check_primaries(conn, primaries)
            for write in writes:
                touched += self._apply(conn, write)
            conn.execute("COMMIT")
        except StaleContactError:
            self._rollback(conn)
            raise
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise StorageError(f"Contact update failed: {exc}") from exc
        finally:
            conn.close()
        logger.debug("Committed %d write(s), %d row(s) touched", len(writes), touched)
        return touched

    @staticmethod
    def _rollback(conn: sqlite3.Connection):
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    @staticmethod
    def _check_primaries(conn: sqlite3.Connection, primaries: Sequence[int]):
        expected = set(primaries)
        rows = conn.execute(
            f"SELECT id FROM Contact WHERE linkPrecedence = ? AND id IN ({', '.join('?' for _ in expected)})",
            [PRIMARY, *expected],
        ).fetchall()
        missing = expected - {row["id"] for row in rows}
        if missing:
            raise StaleContactError(f"Contacts {sorted(missing)} are no longer primary")

    def _apply(self, conn: sqlite3.Connection, write: UpdateMany) -> int:
        clause, params = write.where.to_sql()
        columns = sorted(write.patch)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = [write.patch[column] for column in columns]
        cursor = conn.execute(
            f"UPDATE Contact SET {assignments}, updatedAt = ? WHERE {clause}",
            values + [_timestamp()] + params,
        )
        return cursor.rowcount
