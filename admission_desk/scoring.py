"""
Scoring rules for the admissions process.

Each evaluator scores a submission in up to three groups:

* project: eight sub-scores, plain mean;
* interview: four sub-scores, plain mean;
* language: three sub-scores weighted 0.3 / 0.4 / 0.3
  (clarity, command, analysis).

Submission averages pool the contributions of every concluded
evaluation: project and interview pool all numeric sub-scores into one
mean, language pools the per-evaluator weighted sums. The final score
is the weighted mean of the three pooled averages with weights read
from the settings map. A category without any data is reported as
``None`` rather than ``0``; the final score formula treats it as ``0``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from admission_desk.config import KEY_INT_WEIGHT, KEY_LANG_WEIGHT, KEY_MIN_SCORE, KEY_PROJ_WEIGHT
from admission_desk.database import INTERVIEW_COLUMNS, LANGUAGE_COLUMNS, PROJECT_COLUMNS

LANGUAGE_WEIGHTS = (0.3, 0.4, 0.3)


@dataclass(frozen=True)
class ScoreWeights:
    project: float = 4.0
    interview: float = 5.0
    language: float = 1.0
    min_score: float = 7.0

    @classmethod
    def from_settings(cls, settings: Mapping[str, str]) -> "ScoreWeights":
        """Read the weights and the minimum score, falling back to the defaults."""
        defaults = cls()

        def _read(key: str, default: float) -> float:
            raw = settings.get(key)
            if raw in (None, ""):
                return default
            return float(raw)

        return cls(
            project=_read(KEY_PROJ_WEIGHT, defaults.project),
            interview=_read(KEY_INT_WEIGHT, defaults.interview),
            language=_read(KEY_LANG_WEIGHT, defaults.language),
            min_score=_read(KEY_MIN_SCORE, defaults.min_score),
        )

    @property
    def total(self) -> float:
        return self.project + self.interview + self.language

    def as_dict(self) -> Dict[str, float]:
        return {
            "projW": self.project,
            "intW": self.interview,
            "langW": self.language,
            "minScore": self.min_score,
        }


@dataclass(frozen=True)
class SubmissionScore:
    """Pooled averages and final score of one submission."""

    project_average: Optional[float]
    interview_average: Optional[float]
    language_average: Optional[float]
    final_score: float

    def is_eligible(self, min_score: float) -> bool:
        return is_eligible(self, min_score)


def _round(value: float) -> float:
    return round(value, 2)


def _numbers(values: Iterable[Optional[float]]) -> List[float]:
    return [float(v) for v in values if v is not None]


def mean_or_none(values: Iterable[Optional[float]]) -> Optional[float]:
    """Plain mean of the numeric entries, ``None`` when there are none."""
    numbers = _numbers(values)
    if not numbers:
        return None
    return sum(numbers) / len(numbers)


def language_weighted(clarity: Optional[float], command: Optional[float], analysis: Optional[float]) -> Optional[float]:
    """Weighted language score of one evaluator.

    Absent sub-scores count as ``0``; ``None`` only when all three are absent.
    """
    parts = (clarity, command, analysis)
    if all(p is None for p in parts):
        return None
    return sum((p or 0.0) * w for p, w in zip(parts, LANGUAGE_WEIGHTS))


def evaluation_averages(row: Mapping[str, Optional[float]]) -> Dict[str, Optional[float]]:
    """Per-evaluation averages stored alongside the sub-scores.

    Returns the ``proj_media``, ``int_media`` and ``lang_media`` values,
    rounded to two decimals.
    """
    proj = mean_or_none(row.get(col) for col in PROJECT_COLUMNS)
    interview = mean_or_none(row.get(col) for col in INTERVIEW_COLUMNS)
    lang = language_weighted(*(row.get(col) for col in LANGUAGE_COLUMNS))
    return {
        "proj_media": None if proj is None else _round(proj),
        "int_media": None if interview is None else _round(interview),
        "lang_media": None if lang is None else _round(lang),
    }


def final_score(
    project: Optional[float],
    interview: Optional[float],
    language: Optional[float],
    weights: ScoreWeights,
) -> float:
    """Weighted final score; missing averages count as ``0``."""
    if weights.total == 0:
        return 0.0
    total = (
        (project or 0.0) * weights.project
        + (interview or 0.0) * weights.interview
        + (language or 0.0) * weights.language
    )
    return _round(total / weights.total)


def score_submission(evaluations: Sequence[Mapping[str, Optional[float]]], weights: ScoreWeights) -> SubmissionScore:
    """
    Pool the concluded evaluations of one submission.

    Parameters
    ----------
    evaluations : sequence of mapping
        Evaluation rows (as returned by
        ``DatabaseManager.get_evaluations``). Callers pass concluded
        evaluations only.
    weights : ScoreWeights
        Category weights used for the final score.

    Returns
    -------
    SubmissionScore
        Averages rounded to two decimals, ``None`` for a category with
        no contributing entries.
    """
    project = mean_or_none(ev.get(col) for ev in evaluations for col in PROJECT_COLUMNS)
    interview = mean_or_none(ev.get(col) for ev in evaluations for col in INTERVIEW_COLUMNS)
    language = mean_or_none(
        language_weighted(*(ev.get(col) for col in LANGUAGE_COLUMNS)) for ev in evaluations
    )
    return SubmissionScore(
        project_average=None if project is None else _round(project),
        interview_average=None if interview is None else _round(interview),
        language_average=None if language is None else _round(language),
        final_score=final_score(project, interview, language, weights),
    )


def is_eligible(score: SubmissionScore, min_score: float) -> bool:
    """Every category average must reach ``min_score`` on its own."""
    averages = (score.project_average, score.interview_average, score.language_average)
    return all((avg or 0.0) >= min_score for avg in averages)
