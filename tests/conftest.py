import pytest

from jobpipe.memory import InMemoryBackend
from jobpipe.storage import SQLiteBackend


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "jobs.db"


@pytest.fixture
def sqlite_backend(db_path):
    backend = SQLiteBackend(db_path)
    yield backend
    backend.close()


@pytest.fixture(params=["sqlite", "memory"])
def backend(request, db_path):
    if request.param == "memory":
        yield InMemoryBackend()
        return
    b = SQLiteBackend(db_path)
    yield b
    b.close()
