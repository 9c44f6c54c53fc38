from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from jobpipe.models import DEFAULT_TYPE, DequeueFilter, Job, JobStatus

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_job_defaults():
    job = Job(id="j1", created_at=NOW, class_name="SendEmail")
    assert job.status == JobStatus.FREE
    assert job.type == DEFAULT_TYPE
    assert job.lock_uuid is None and job.locked_at is None
    assert job.attributes == {}


def test_unknown_status_rejected():
    with pytest.raises(ValidationError):
        Job(id="j1", created_at=NOW, class_name="SendEmail", status="running")


def test_locked_job_needs_lock_fields():
    with pytest.raises(ValidationError):
        Job(id="j1", created_at=NOW, class_name="SendEmail", status=JobStatus.LOCKED)
    with pytest.raises(ValidationError):
        Job(id="j1", created_at=NOW, class_name="SendEmail", status=JobStatus.LOCKED, lock_uuid="l1")
    job = Job(id="j1", created_at=NOW, class_name="SendEmail", status=JobStatus.LOCKED,
              lock_uuid="l1", locked_at=NOW)
    assert job.lock_uuid == "l1"


@pytest.mark.parametrize("status", [JobStatus.FREE, JobStatus.FAILED])
def test_unlocked_job_cannot_carry_lock(status):
    with pytest.raises(ValidationError):
        Job(id="j1", created_at=NOW, class_name="SendEmail", status=status, lock_uuid="l1")


def test_to_attributes_merges_record_fields():
    job = Job(id="j1", created_at=NOW, class_name="SendEmail", type="email",
              attributes={"to": "ada@example.com"})
    assert job.to_attributes() == {
        "to": "ada@example.com",
        "id": "j1",
        "status": "free",
        "className": "SendEmail",
        "type": "email",
    }


def test_filter_only_and_exclude_are_exclusive():
    with pytest.raises(ValidationError):
        DequeueFilter(only={"a"}, exclude={"b"})


def test_filter_coerce():
    assert DequeueFilter.coerce(None) == DequeueFilter()
    flt = DequeueFilter.coerce({"only": ["sms", "sms", "email"]})
    assert flt.only == frozenset({"sms", "email"})
    assert DequeueFilter.coerce(flt) is flt


def test_filter_accepts():
    assert DequeueFilter().accepts("anything")
    only = DequeueFilter(only={"sms"})
    assert only.accepts("sms") and not only.accepts("email")
    exclude = DequeueFilter(exclude={"sms"})
    assert exclude.accepts("email") and not exclude.accepts("sms")
    assert DequeueFilter(exclude=set()).accepts("sms")


def test_filter_matches_nothing():
    assert DequeueFilter(only=set()).matches_nothing
    assert not DequeueFilter(exclude=set()).matches_nothing
    assert not DequeueFilter().matches_nothing


def test_filter_rejects_unknown_keys():
    with pytest.raises(ValidationError):
        DequeueFilter.coerce({"onyl": ["sms"]})
