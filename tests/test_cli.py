import pytest
from typer.testing import CliRunner

from jobpipe.cli import app
from jobpipe.models import JobStatus
from jobpipe.storage import SQLiteBackend

runner = CliRunner()


@pytest.fixture
def invoke(db_path):
    def _invoke(*args, **kwargs):
        return runner.invoke(app, ["--db", str(db_path), *args], **kwargs)
    return _invoke


@pytest.fixture
def store(db_path):
    backend = SQLiteBackend(db_path)
    yield backend
    backend.close()


def test_enqueue(invoke, store):
    result = invoke("enqueue", "SendEmail", "--type", "email",
                    "--attr", "to=ada@example.com", "--json", '{"retries": 2}')
    assert result.exit_code == 0, result.output
    assert "Enqueued" in result.output
    [job] = store.list_jobs()
    assert job.class_name == "SendEmail"
    assert job.type == "email"
    assert job.attributes == {"to": "ada@example.com", "retries": 2}


@pytest.mark.parametrize("args", [
    ["--json", "{broken"],
    ["--json", "[1, 2]"],
    ["--attr", "no-equals-sign"],
])
def test_enqueue_bad_attributes(invoke, store, args):
    result = invoke("enqueue", "SendEmail", *args)
    assert result.exit_code == 2
    assert store.list_jobs() == []


def test_dequeue(invoke, store):
    store.enqueue({"className": "SendEmail", "type": "email"})
    sms = store.enqueue({"className": "SendSms", "type": "sms"})

    result = invoke("dequeue", "--only", "sms")
    assert result.exit_code == 0, result.output
    assert store.find(sms.id).status == JobStatus.LOCKED

    assert invoke("dequeue", "--exclude", "email").output.strip() == "No job available."
    assert invoke("dequeue").exit_code == 0
    assert store.counts_by_status()[JobStatus.LOCKED] == 2


def test_dequeue_rejects_both_filters(invoke):
    result = invoke("dequeue", "--only", "a", "--exclude", "b")
    assert result.exit_code == 2


def test_find_unknown(invoke):
    result = invoke("find", "nope")
    assert result.exit_code == 1
    assert "Not found" in result.output


def test_find(invoke, store):
    job = store.enqueue({"className": "SendEmail", "to": "ada"})
    result = invoke("find", job.id)
    assert result.exit_code == 0, result.output
    assert "SendEmail" in result.output


def test_complete(invoke, store):
    job = store.enqueue({"className": "SendEmail"})
    store.dequeue()
    result = invoke("complete", job.id)
    assert result.exit_code == 0, result.output
    assert store.find(job.id) is None


def test_reset_and_fail(invoke, store):
    job = store.enqueue({"className": "SendEmail", "type": "email"})
    store.dequeue()

    assert invoke("reset", job.id, "--type", "email-retry").exit_code == 0
    stored = store.find(job.id)
    assert stored.status == JobStatus.FREE
    assert stored.type == "email-retry"

    store.dequeue()
    assert invoke("fail", job.id).exit_code == 0
    stored = store.find(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.type == "email-retry"


def test_complete_unknown(invoke):
    assert invoke("complete", "nope").exit_code == 1


def test_status_and_list(invoke, store):
    store.enqueue({"className": "SendEmail"})
    result = invoke("status")
    assert result.exit_code == 0, result.output
    assert "free" in result.output

    assert invoke("list").exit_code == 0
    assert invoke("list", "--status", "failed").exit_code == 0
    assert invoke("list", "--status", "running").exit_code == 2


def test_clear(invoke, store):
    store.enqueue({"className": "SendEmail"})
    assert invoke("clear", input="n\n").exit_code == 1
    assert len(store.list_jobs()) == 1

    result = invoke("clear", "--yes")
    assert result.exit_code == 0, result.output
    assert store.list_jobs() == []


def test_unopenable_database(tmp_path):
    result = runner.invoke(app, ["--db", str(tmp_path), "status"])
    assert result.exit_code == 1
    assert "Error" in result.output
