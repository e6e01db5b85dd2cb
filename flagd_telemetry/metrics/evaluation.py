"""Outcome of a single flag evaluation, as seen by the metrics recorder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class EvaluationSuccess:
    """Evaluation resolved: record an impression and a reason."""

    reason: str
    variant: str
    flag_key: str


@dataclass(frozen=True)
class EvaluationFailure:
    """Evaluation failed: record only the reason, tagged with the error."""

    reason: str
    error: BaseException


EvaluationOutcome = Union[EvaluationSuccess, EvaluationFailure]


def classify_evaluation(
    error: Optional[BaseException],
    reason: str,
    variant: str,
    flag_key: str,
) -> EvaluationOutcome:
    if error is None:
        return EvaluationSuccess(reason=reason, variant=variant, flag_key=flag_key)
    return EvaluationFailure(reason=reason, error=error)
