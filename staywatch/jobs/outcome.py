"""Explicit results returned by job handlers."""

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Success:
    detail: Optional[Any] = None


@dataclass(frozen=True)
class RetryableError:
    """Transient failure; the runner re-enqueues the job with backoff."""

    message: str


@dataclass(frozen=True)
class FatalError:
    """Permanent failure; the job is dropped."""

    message: str


Outcome = Union[Success, RetryableError, FatalError]
