"""
In-memory backend.

Suitable for tests and single-process pipelines. Rows are kept in the same
shape as the SQLite table, attributes encoded by the codec.
"""
import itertools
import logging
import threading
from typing import Dict, Optional

from pydantic import ValidationError

from . import codec
from .backend import (
    Attributes, Backend, FilterOptions,
    split_new_job, split_write_back,
)
from .errors import CorruptPayload
from .models import DequeueFilter, Job, JobStatus
from .utils import new_uuid, utcnow

logger = logging.getLogger(__name__)


class InMemoryBackend(Backend):

    def __init__(self):
        self._rows: Dict[str, dict] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def enqueue(self, attributes: Attributes) -> Job:
        class_name, job_type, payload = split_new_job(attributes)
        job_id = new_uuid()
        row = {
            "uuid": job_id,
            "status": JobStatus.FREE,
            "class_name": class_name,
            "type": job_type,
            "lock_uuid": None,
            "locked_at": None,
            "attributes": codec.encode(payload),
        }
        with self._lock:
            row.update(seq=next(self._seq), created_at=utcnow())
            self._rows[job_id] = row
        logger.debug("enqueued %s (%s, type=%s)", job_id, class_name, job_type)
        return self.find(job_id)

    def dequeue(self, options: FilterOptions = None) -> Optional[Job]:
        flt = DequeueFilter.coerce(options)
        if flt.matches_nothing:
            return None
        with self._lock:
            eligible = [
                r for r in self._rows.values()
                if r["status"] == JobStatus.FREE and flt.accepts(r["type"])
            ]
            if not eligible:
                return None
            row = min(eligible, key=lambda r: (r["created_at"], r["seq"]))
            row.update(status=JobStatus.LOCKED, lock_uuid=new_uuid(), locked_at=utcnow())
            job = self.load(row)
        logger.debug("claimed %s with lock %s", job.id, job.lock_uuid)
        return job

    def find(self, job_id: str) -> Optional[Job]:
        with self._lock:
            row = self._rows.get(job_id)
            return self.load(row) if row is not None else None

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def complete(self, attributes: Attributes) -> None:
        fields = split_write_back(attributes)
        if fields is None:
            return
        with self._lock:
            self._rows.pop(fields[0], None)
        logger.debug("completed %s", fields[0])

    def reset(self, attributes: Attributes) -> None:
        self._release(attributes, JobStatus.FREE)

    def fail(self, attributes: Attributes) -> None:
        self._release(attributes, JobStatus.FAILED)

    def _release(self, attributes: Attributes, status: str):
        fields = split_write_back(attributes)
        if fields is None:
            return
        job_id, job_type, payload = fields
        encoded = codec.encode(payload)
        with self._lock:
            row = self._rows.get(job_id)
            if row is None:
                return
            row.update(status=status, lock_uuid=None, locked_at=None, attributes=encoded)
            if job_type is not None:
                row["type"] = job_type
        logger.debug("released %s as %s", job_id, status)

    @staticmethod
    def load(row: dict) -> Job:
        attributes = codec.decode(row["attributes"])
        try:
            return Job(
                id=row["uuid"],
                created_at=row["created_at"],
                status=row["status"],
                class_name=row["class_name"],
                type=row["type"],
                lock_uuid=row["lock_uuid"],
                locked_at=row["locked_at"],
                attributes=attributes,
            )
        except ValidationError as e:
            raise CorruptPayload(f"job {row['uuid']} is not a valid record: {e}") from e
