"""
Backend contract.

A pipeline driver only ever talks to a `Backend`, so the storage engine can be
swapped without touching it. Every implementation must provide the same seven
operations with the same semantics:

    enqueue   persist a new free job and return it as stored
    dequeue   atomically claim the oldest free job matching a filter
    find      look a job up by id
    clear     remove every job
    complete  delete a claimed job
    reset     release a claimed job back to free
    fail      park a claimed job as failed

Write-back calls take the attribute mapping produced by `Job.to_attributes()`
(or the `Job` itself) and are no-ops when it carries no id.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .models import (
    CLASS_KEY, DEFAULT_TYPE, ID_KEY, RESERVED_KEYS, TYPE_KEY,
    DequeueFilter, Job,
)

Attributes = Union[Job, Mapping[str, Any]]
FilterOptions = Union[DequeueFilter, Mapping[str, Any], None]


def as_mapping(attributes: Attributes) -> Dict[str, Any]:
    if isinstance(attributes, Job):
        return attributes.to_attributes()
    return dict(attributes)


def payload_of(attrs: Mapping[str, Any]) -> Dict[str, Any]:
    """Business attributes only, with the reserved record keys removed."""
    return {k: v for k, v in attrs.items() if k not in RESERVED_KEYS}


def split_new_job(attributes: Attributes) -> Tuple[str, str, Dict[str, Any]]:
    attrs = as_mapping(attributes)
    class_name = attrs.get(CLASS_KEY)
    if not isinstance(class_name, str) or not class_name.strip():
        raise ValueError(f"'{CLASS_KEY}' must be a non-empty string")
    job_type = attrs.get(TYPE_KEY)
    if job_type is None:
        job_type = DEFAULT_TYPE
    if not isinstance(job_type, str):
        raise ValueError(f"'{TYPE_KEY}' must be a string")
    return class_name, job_type, payload_of(attrs)


def split_write_back(attributes: Attributes) -> Optional[Tuple[str, Optional[str], Dict[str, Any]]]:
    """(id, type or None, payload) for reset/fail, or None when there is no id."""
    attrs = as_mapping(attributes)
    job_id = attrs.get(ID_KEY)
    if job_id is None:
        return None
    job_type = attrs.get(TYPE_KEY)
    if job_type is not None and not isinstance(job_type, str):
        raise ValueError(f"'{TYPE_KEY}' must be a string")
    return str(job_id), job_type, payload_of(attrs)


class Backend(ABC):

    @abstractmethod
    def enqueue(self, attributes: Attributes) -> Job:
        """Persist a new job.

        `attributes` must hold `className`; `type` defaults to "default".
        Returns the job re-read from storage.
        """
        ...

    @abstractmethod
    def dequeue(self, options: FilterOptions = None) -> Optional[Job]:
        """Claim the oldest free job accepted by `options`, or return None."""
        ...

    @abstractmethod
    def find(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def complete(self, attributes: Attributes) -> None:
        ...

    @abstractmethod
    def reset(self, attributes: Attributes) -> None:
        """Release a claimed job to free, persisting its type and payload.

        The class name is never changed.
        """
        ...

    @abstractmethod
    def fail(self, attributes: Attributes) -> None:
        ...
