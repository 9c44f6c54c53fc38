"""
SQLite job store.

Claiming is a single conditional UPDATE: the oldest free row matching the
filter is switched to locked under a fresh token, and the row is read back by
that token. SQLite serialises writers, so two workers can never lock the same
row; the store itself holds no in-process locks.
"""
import logging
import sqlite3
from functools import wraps
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from . import codec
from .backend import (
    Attributes, Backend, FilterOptions,
    split_new_job, split_write_back,
)
from .config import DEFAULT_TABLE, DEFAULT_TIMEOUT, Settings
from .errors import ConstraintViolation, CorruptPayload, StoreUnavailable
from .models import DequeueFilter, Job, JobStatus
from .utils import from_db_time, new_uuid, to_db_time, utcnow

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS {table}(
  uuid TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  status TEXT NOT NULL,
  class_name TEXT NOT NULL,
  type TEXT NOT NULL,
  lock_uuid TEXT,
  locked_at TEXT,
  attributes BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_{table}_status_created ON {table}(status,created_at);
"""


def init_db(conn: sqlite3.Connection, table: str = DEFAULT_TABLE):
    conn.executescript("PRAGMA journal_mode=WAL;" + SCHEMA.format(table=table))
    conn.commit()


def translate_errors(fn):
    """Re-raise sqlite3 failures as jobpipe errors, rolling back any open transaction."""
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except sqlite3.IntegrityError as e:
            self._rollback()
            logger.warning("%s: constraint violation: %s", fn.__name__, e)
            raise ConstraintViolation(str(e)) from e
        except sqlite3.Error as e:
            self._rollback()
            logger.warning("%s: store unavailable: %s", fn.__name__, e)
            raise StoreUnavailable(str(e)) from e
    return wrapper


class SQLiteBackend(Backend):

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        timeout: float = DEFAULT_TIMEOUT,
        table: str = DEFAULT_TABLE,
        settings: Optional[Settings] = None,
    ):
        if settings is None:
            values = {"timeout": timeout, "table": table}
            if path is not None:
                values["db_path"] = path
            settings = Settings(**values)
        self.settings = settings
        self._conn: Optional[sqlite3.Connection] = None
        self.connect()

    @classmethod
    def from_config(cls, settings: Settings) -> "SQLiteBackend":
        return cls(settings=settings)

    # ---------- connection lifecycle ----------

    @property
    def table(self) -> str:
        return self.settings.table

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable("backend is not connected")
        return self._conn

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self):
        if self._conn is not None:
            return
        path = self.settings.db_path
        if str(path) != ":memory:":
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreUnavailable(f"cannot create {path.parent}: {e}") from e
        try:
            conn = sqlite3.connect(str(path), timeout=self.settings.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open {path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            init_db(conn, self.table)
        except sqlite3.Error as e:
            conn.close()
            raise StoreUnavailable(f"cannot initialise {path}: {e}") from e
        self._conn = conn
        logger.debug("connected to %s (table %s)", path, self.table)

    def reconnect(self):
        self.close()
        self.connect()

    def close(self):
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def __enter__(self) -> "SQLiteBackend":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _rollback(self):
        if self._conn is not None and self._conn.in_transaction:
            try:
                self._conn.rollback()
            except sqlite3.Error as e:
                logger.warning("rollback failed: %s", e)

    # ---------- backend contract ----------

    @translate_errors
    def enqueue(self, attributes: Attributes) -> Job:
        class_name, job_type, payload = split_new_job(attributes)
        job_id = new_uuid()
        self.conn.execute(
            f"""INSERT INTO {self.table}(uuid,created_at,status,class_name,type,attributes)
                VALUES(?,?,?,?,?,?)""",
            (job_id, to_db_time(utcnow()), JobStatus.FREE, class_name, job_type, codec.encode(payload)),
        )
        self.conn.commit()
        logger.debug("enqueued %s (%s, type=%s)", job_id, class_name, job_type)
        return self.find(job_id)

    @translate_errors
    def dequeue(self, options: FilterOptions = None) -> Optional[Job]:
        flt = DequeueFilter.coerce(options)
        if flt.matches_nothing:
            return None
        lock = new_uuid()
        filter_sql, filter_params = self._filter_sql(flt)
        cur = self.conn.execute(
            f"""UPDATE {self.table}
                   SET status=?, lock_uuid=?, locked_at=?
                 WHERE uuid = (
                        SELECT uuid FROM {self.table}
                         WHERE status=?{filter_sql}
                         ORDER BY created_at ASC, rowid ASC
                         LIMIT 1)
                   AND status=?""",
            (JobStatus.LOCKED, lock, to_db_time(utcnow()), JobStatus.FREE, *filter_params, JobStatus.FREE),
        )
        claimed = cur.rowcount
        self.conn.commit()
        if claimed != 1:
            return None
        row = self.conn.execute(
            f"SELECT * FROM {self.table} WHERE status=? AND lock_uuid=?",
            (JobStatus.LOCKED, lock),
        ).fetchone()
        if row is None:
            # completed or released by someone else right after the claim
            return None
        logger.debug("claimed %s with lock %s", row["uuid"], lock)
        return self.load(row)

    @translate_errors
    def find(self, job_id: str) -> Optional[Job]:
        row = self.conn.execute(f"SELECT * FROM {self.table} WHERE uuid=?", (job_id,)).fetchone()
        return self.load(row) if row is not None else None

    @translate_errors
    def clear(self) -> None:
        self.conn.execute(f"DELETE FROM {self.table}")
        self.conn.commit()
        logger.debug("cleared %s", self.table)

    @translate_errors
    def complete(self, attributes: Attributes) -> None:
        fields = split_write_back(attributes)
        if fields is None:
            return
        job_id = fields[0]
        self.conn.execute(f"DELETE FROM {self.table} WHERE uuid=?", (job_id,))
        self.conn.commit()
        logger.debug("completed %s", job_id)

    def reset(self, attributes: Attributes) -> None:
        self._release(attributes, JobStatus.FREE)

    def fail(self, attributes: Attributes) -> None:
        self._release(attributes, JobStatus.FAILED)

    @translate_errors
    def _release(self, attributes: Attributes, status: str):
        fields = split_write_back(attributes)
        if fields is None:
            return
        job_id, job_type, payload = fields
        # class_name is fixed at enqueue
        cur = self.conn.execute(
            f"""UPDATE {self.table}
                   SET status=?, lock_uuid=NULL, locked_at=NULL, type=COALESCE(?, type), attributes=?
                 WHERE uuid=?""",
            (status, job_type, codec.encode(payload), job_id),
        )
        self.conn.commit()
        logger.debug("released %s as %s (%d row)", job_id, status, cur.rowcount)

    def load(self, row: sqlite3.Row) -> Job:
        attributes = codec.decode(row["attributes"])
        try:
            return Job(
                id=row["uuid"],
                created_at=from_db_time(row["created_at"]),
                status=row["status"],
                class_name=row["class_name"],
                type=row["type"],
                lock_uuid=row["lock_uuid"],
                locked_at=from_db_time(row["locked_at"]),
                attributes=attributes,
            )
        except ValidationError as e:
            raise CorruptPayload(f"job {row['uuid']} is not a valid record: {e}") from e

    # ---------- inspection ----------

    @translate_errors
    def list_jobs(self, status: Optional[str] = None) -> List[Job]:
        if status:
            cur = self.conn.execute(
                f"SELECT * FROM {self.table} WHERE status=? ORDER BY created_at, rowid", (status,)
            )
        else:
            cur = self.conn.execute(f"SELECT * FROM {self.table} ORDER BY created_at, rowid")
        return [self.load(r) for r in cur.fetchall()]

    @translate_errors
    def counts_by_status(self) -> Dict[str, int]:
        out = {s: 0 for s in JobStatus.ALL}
        for status, count in self.conn.execute(
            f"SELECT status, COUNT(*) FROM {self.table} GROUP BY status"
        ):
            out[status] = count
        return out

    @staticmethod
    def _filter_sql(flt: DequeueFilter) -> Tuple[str, tuple]:
        if flt.only is not None:
            types = sorted(flt.only)
            return f" AND type IN ({','.join('?' * len(types))})", tuple(types)
        if flt.exclude:
            types = sorted(flt.exclude)
            return f" AND type NOT IN ({','.join('?' * len(types))})", tuple(types)
        return "", ()
