import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_TABLE = "jobpipe_jobs"
DEFAULT_TIMEOUT = 5.0

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def default_home() -> Path:
    return Path(os.environ.get("JOBPIPE_HOME", Path.home() / ".jobpipe"))


def default_db_path() -> Path:
    override = os.environ.get("JOBPIPE_DB")
    if override:
        return Path(override)
    return default_home() / "jobs.db"


class Settings(BaseModel):
    db_path: Path = Field(default_factory=default_db_path)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    table: str = DEFAULT_TABLE

    @field_validator("table")
    @classmethod
    def _plain_identifier(cls, v: str) -> str:
        # interpolated into SQL, so only bare identifiers are allowed
        if not _IDENTIFIER.match(v):
            raise ValueError(f"invalid table name {v!r}")
        return v

    @classmethod
    def from_env(cls) -> "Settings":
        values = {"db_path": default_db_path()}
        if os.environ.get("JOBPIPE_TIMEOUT"):
            values["timeout"] = os.environ["JOBPIPE_TIMEOUT"]
        if os.environ.get("JOBPIPE_TABLE"):
            values["table"] = os.environ["JOBPIPE_TABLE"]
        return cls(**values)
