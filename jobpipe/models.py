from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class JobStatus:
    FREE = "free"
    LOCKED = "locked"
    FAILED = "failed"

    ALL = (FREE, LOCKED, FAILED)


# Keys of an attribute mapping that describe the record rather than the job payload.
ID_KEY = "id"
STATUS_KEY = "status"
CLASS_KEY = "className"
TYPE_KEY = "type"
RESERVED_KEYS = frozenset({ID_KEY, STATUS_KEY, CLASS_KEY, TYPE_KEY})

DEFAULT_TYPE = "default"


class Job(BaseModel):
    id: str
    created_at: datetime
    status: str = Field(default=JobStatus.FREE)  # free | locked | failed
    class_name: str
    type: str = DEFAULT_TYPE
    lock_uuid: Optional[str] = None
    locked_at: Optional[datetime] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: str) -> str:
        if v not in JobStatus.ALL:
            raise ValueError(f"unknown status {v!r}")
        return v

    @model_validator(mode="after")
    def _lock_fields_match_status(self):
        locked = self.status == JobStatus.LOCKED
        has_lock = self.lock_uuid is not None and self.locked_at is not None
        if locked and not has_lock:
            raise ValueError("a locked job needs lock_uuid and locked_at")
        if not locked and (self.lock_uuid is not None or self.locked_at is not None):
            raise ValueError(f"a {self.status} job cannot carry lock fields")
        return self

    def to_attributes(self) -> Dict[str, Any]:
        """Flat mapping handed to the job class registry and back to the backend."""
        attrs = dict(self.attributes)
        attrs[ID_KEY] = self.id
        attrs[STATUS_KEY] = self.status
        attrs[CLASS_KEY] = self.class_name
        attrs[TYPE_KEY] = self.type
        return attrs


class DequeueFilter(BaseModel):
    """Restricts which job types a dequeue may claim. `only` and `exclude` are exclusive."""

    model_config = ConfigDict(extra="forbid")

    only: Optional[FrozenSet[str]] = None
    exclude: Optional[FrozenSet[str]] = None

    @model_validator(mode="after")
    def _exclusive(self):
        if self.only is not None and self.exclude is not None:
            raise ValueError("use either 'only' or 'exclude', not both")
        return self

    @classmethod
    def coerce(cls, options: Union["DequeueFilter", Mapping[str, Any], None]) -> "DequeueFilter":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(dict(options))

    @property
    def matches_nothing(self) -> bool:
        return self.only is not None and not self.only

    def accepts(self, job_type: str) -> bool:
        if self.only is not None:
            return job_type in self.only
        if self.exclude:
            return job_type not in self.exclude
        return True
