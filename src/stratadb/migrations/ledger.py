"""Migration ledger stored inside the managed database.

The ledger is one reserved table holding an append-only row per applied
migration: its unique name, the schema snapshot it produced and the operations
it ran. It is read and written on the caller's connection so a ledger entry
commits atomically with the DDL it records.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from stratadb.core.types import MigrationRecord
from stratadb.exceptions import LedgerCorruptionError
from stratadb.migrations.operations import ChangeOperation
from stratadb.schema.model import SchemaSnapshot
from stratadb.schema.tables import JSONType

logger = logging.getLogger(__name__)

LEDGER_TABLE = "_strata_migrations"


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for StrataDB's own tables."""

    pass


class MigrationEntry(Base):
    """One applied migration."""

    __tablename__ = LEDGER_TABLE

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    operations: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    statement_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def to_record(self) -> MigrationRecord:
        return MigrationRecord(
            id=self.id,
            name=self.name,
            version=self.version,
            checksum=self.checksum,
            operations=list(self.operations),
            statement_count=self.statement_count,
            applied_at=self.applied_at,
        )

    def to_snapshot(self) -> SchemaSnapshot:
        return SchemaSnapshot.from_dict(self.snapshot).with_version(self.version)


class MigrationLedger:
    """Reads and appends ledger entries on a given connection."""

    def ensure(self, conn: Connection) -> None:
        """Create the ledger table if it does not exist."""
        Base.metadata.create_all(conn, tables=[MigrationEntry.__table__])  # type: ignore[list-item]

    def exists(self, conn: Connection) -> bool:
        return inspect(conn).has_table(LEDGER_TABLE)

    def entries(self, conn: Connection) -> list[MigrationEntry]:
        """All entries, oldest first. Empty when the ledger table is missing."""
        if not self.exists(conn):
            return []
        with Session(bind=conn) as session:
            entries = list(session.scalars(select(MigrationEntry).order_by(MigrationEntry.id)))
            session.expunge_all()
        return entries

    def find(self, conn: Connection, name: str) -> MigrationEntry | None:
        return next((e for e in self.entries(conn) if e.name == name), None)

    def latest_snapshot(self, conn: Connection) -> SchemaSnapshot | None:
        entries = self.entries(conn)
        return entries[-1].to_snapshot() if entries else None

    def verify(self, conn: Connection) -> list[MigrationEntry]:
        """Check the ledger's internal consistency.

        Versions must run 1..n in application order, timestamps must not go
        backwards, and every stored snapshot must match its checksum.

        Returns:
            The verified entries, oldest first

        Raises:
            LedgerCorruptionError: On the first inconsistency found
        """
        entries = self.entries(conn)
        previous: MigrationEntry | None = None
        for position, entry in enumerate(entries, start=1):
            if entry.version != position:
                raise LedgerCorruptionError(
                    f"Migration '{entry.name}' has version {entry.version}, expected {position}",
                    {"migration": entry.name, "version": entry.version, "expected": position},
                )
            if previous is not None and _naive(entry.applied_at) < _naive(previous.applied_at):
                raise LedgerCorruptionError(
                    f"Migration '{entry.name}' was applied before '{previous.name}'",
                    {"migration": entry.name, "previous": previous.name},
                )
            try:
                checksum = SchemaSnapshot.from_dict(entry.snapshot).checksum
            except (KeyError, TypeError, ValueError) as e:
                raise LedgerCorruptionError(
                    f"Migration '{entry.name}' holds an unreadable snapshot: {e}",
                    {"migration": entry.name},
                ) from e
            if checksum != entry.checksum:
                raise LedgerCorruptionError(
                    f"Snapshot checksum mismatch for migration '{entry.name}'",
                    {"migration": entry.name, "stored": entry.checksum, "computed": checksum},
                )
            previous = entry
        return entries

    def append(
        self,
        conn: Connection,
        name: str,
        snapshot: SchemaSnapshot,
        operations: list[ChangeOperation],
        statement_count: int,
    ) -> MigrationRecord:
        """Record an applied migration in the caller's transaction."""
        with Session(bind=conn) as session:
            entry = MigrationEntry(
                name=name,
                version=snapshot.version,
                checksum=snapshot.checksum,
                snapshot=snapshot.to_dict(),
                operations=[op.to_dict() for op in operations],
                statement_count=statement_count,
                applied_at=utc_now(),
            )
            session.add(entry)
            session.flush()
            record = entry.to_record()
        logger.debug(f"Recorded migration '{name}' as version {snapshot.version}")
        return record


def _naive(value: datetime) -> datetime:
    # SQLite returns naive timestamps; compare everything as naive UTC
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
