"""
Result types shared by the detection stages.

Per-frame stages report a benign absence with :class:`NotFound` instead of
raising; startup problems with the reference pattern raise
:class:`InvalidPatternError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class InvalidPatternError(ValueError):
    """Raised when a reference pattern cannot support homography estimation."""


class NotFoundReason(Enum):
    """Why a frame did not produce a detection."""
    INSUFFICIENT_CORRESPONDENCES = "insufficient_correspondences"
    DEGENERATE_HOMOGRAPHY = "degenerate_homography"
    DEGENERATE_POSE = "degenerate_pose"


@dataclass(frozen=True)
class Found(Generic[T]):
    """A stage produced a value."""

    value: T

    @property
    def found(self) -> bool:
        return True


@dataclass(frozen=True)
class NotFound:
    """A stage produced nothing for this frame."""

    reason: NotFoundReason
    detail: str = ""

    @property
    def found(self) -> bool:
        return False


StageResult = Union[Found[T], NotFound]
