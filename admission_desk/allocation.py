"""
Seat allocation per research line.

Eligible candidates of a line are ranked by final score and offered
seats pool by pool: quota seats go to quota holders, institutional
seats to institutional-seat holders, open seats to everybody else.
Seats a pool could not fill are then handed to the best remaining
eligible candidates regardless of pool and tagged as reallocated, so a
line is always filled when enough eligible candidates exist.

Allocation is pure computation over the local store: nothing is
written back and results are recomputed on demand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from admission_desk.database import QUOTA_COLUMNS, DatabaseManager
from admission_desk.errors import AllocationConfigError
from admission_desk.scoring import ScoreWeights, SubmissionScore, score_submission

logger = logging.getLogger(__name__)

DEFAULT_LINE = "Geral"


class SeatCategory(str, Enum):
    QUOTA = "Cota"
    INSTITUTIONAL = "Institucional"
    OPEN = "Ampla Concorrência"
    REALLOCATED = "Remanejamento"


@dataclass(frozen=True)
class LineSeatConfig:
    """Seats offered by one research line."""

    total: int
    cota: int = 0
    institucional: int = 0

    def __post_init__(self) -> None:
        for name in ("total", "cota", "institucional"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise AllocationConfigError(f"Seat count '{name}' must be an integer, got {value!r}")
            if value < 0:
                raise AllocationConfigError(f"Seat count '{name}' cannot be negative (got {value})")
        if self.cota + self.institucional > self.total:
            raise AllocationConfigError(
                f"Reserved seats ({self.cota} quota + {self.institucional} institutional) "
                f"exceed the line total of {self.total}"
            )

    @property
    def open(self) -> int:
        return self.total - self.cota - self.institucional

    @classmethod
    def from_value(cls, value: Union["LineSeatConfig", Mapping[str, Any]]) -> "LineSeatConfig":
        if isinstance(value, LineSeatConfig):
            return value
        try:
            return cls(
                total=value["total"],
                cota=value.get("cota", 0),
                institucional=value.get("institucional", 0),
            )
        except KeyError as exc:
            raise AllocationConfigError(f"Seat configuration is missing {exc}") from exc


def parse_seat_config(config: Optional[Mapping[str, Any]]) -> Dict[str, LineSeatConfig]:
    """Validate a per-line seat configuration.

    Accepts either ``{line: {...}}`` or the wrapped form ``{"lines": {line: {...}}}``.
    """
    if not config:
        return {}
    lines = config.get("lines", config) if isinstance(config.get("lines"), Mapping) else config
    return {line: LineSeatConfig.from_value(value) for line, value in lines.items()}


@dataclass(frozen=True)
class Candidate:
    protocol: str
    name: str
    line: str
    score: SubmissionScore
    has_quota: bool = False
    institutional: bool = False

    @property
    def final_score(self) -> float:
        return self.score.final_score

    @classmethod
    def from_submission(cls, submission: Mapping[str, Any], score: SubmissionScore) -> "Candidate":
        return cls(
            protocol=submission["protocol"],
            name=submission.get("nome") or "",
            line=submission.get("linha_pesquisa") or DEFAULT_LINE,
            score=score,
            has_quota=any(submission.get(col) for col in QUOTA_COLUMNS),
            institutional=bool(submission.get("vaga_institucional")),
        )


@dataclass(frozen=True)
class AllocatedCandidate:
    candidate: Candidate
    category: SeatCategory
    rank: int

    @property
    def protocol(self) -> str:
        return self.candidate.protocol

    @property
    def final_score(self) -> float:
        return self.candidate.final_score

    def as_dict(self) -> Dict[str, Any]:
        score = self.candidate.score
        return {
            "rank": self.rank,
            "protocol": self.candidate.protocol,
            "nome": self.candidate.name,
            "linha_pesquisa": self.candidate.line,
            "media_projeto": score.project_average,
            "media_entrevista": score.interview_average,
            "media_lingua": score.language_average,
            "notaFinal": score.final_score,
            "temCota": self.candidate.has_quota,
            "tipoVaga": self.category.value,
        }


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Descending final score; ties broken by ascending protocol."""
    return sorted(candidates, key=lambda c: (-c.final_score, c.protocol))


def allocate_line(ranked: Sequence[Candidate], config: LineSeatConfig) -> List[AllocatedCandidate]:
    """Fill the seats of one line from an already ranked candidate list."""
    rank_of = {c.protocol: idx + 1 for idx, c in enumerate(ranked)}
    quota_pool = [c for c in ranked if c.has_quota]
    institutional_pool = [c for c in ranked if c.institutional and not c.has_quota]
    open_pool = [c for c in ranked if not c.has_quota and not c.institutional]

    allocated: List[AllocatedCandidate] = []
    for pool, seats, category in (
        (quota_pool, config.cota, SeatCategory.QUOTA),
        (institutional_pool, config.institucional, SeatCategory.INSTITUTIONAL),
        (open_pool, config.open, SeatCategory.OPEN),
    ):
        allocated.extend(AllocatedCandidate(c, category, rank_of[c.protocol]) for c in pool[:seats])

    shortfall = config.total - len(allocated)
    if shortfall > 0:
        taken = {a.protocol for a in allocated}
        remaining = [c for c in ranked if c.protocol not in taken]
        allocated.extend(
            AllocatedCandidate(c, SeatCategory.REALLOCATED, rank_of[c.protocol]) for c in remaining[:shortfall]
        )
    return allocated


def allocate(
    candidates: Iterable[Candidate],
    seat_config: Optional[Mapping[str, Any]],
    min_score: float,
) -> Dict[str, List[AllocatedCandidate]]:
    """
    Allocate seats for every research line.

    Parameters
    ----------
    candidates : iterable of Candidate
        Scored, non-rejected candidates.
    seat_config : mapping
        Per-line seat configuration, validated before use. Lines with
        eligible candidates but no entry offer one open seat per
        eligible candidate.
    min_score : float
        Minimum every category average must reach individually.

    Returns
    -------
    dict[str, list[AllocatedCandidate]]
        Allocated candidates per line in seat-category order (quota,
        institutional, open, reallocated).
    """
    lines_config = parse_seat_config(seat_config)
    by_line: Dict[str, List[Candidate]] = {}
    for candidate in candidates:
        if not candidate.score.is_eligible(min_score):
            continue
        by_line.setdefault(candidate.line, []).append(candidate)

    result: Dict[str, List[AllocatedCandidate]] = {}
    for line, members in by_line.items():
        ranked = rank_candidates(members)
        config = lines_config.get(line) or LineSeatConfig(total=len(ranked))
        result[line] = allocate_line(ranked, config)
        logger.info("Line %s: %d/%d seats filled from %d eligible", line, len(result[line]), config.total, len(ranked))
    return result


@dataclass
class AllocationResult:
    allocation: Dict[str, List[AllocatedCandidate]]
    weights: ScoreWeights
    success: bool = True
    config: Dict[str, float] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Flatten the allocation into one DataFrame row per allocated seat."""
        rows = [a.as_dict() for line in sorted(self.allocation) for a in self.allocation[line]]
        return pd.DataFrame(rows, columns=[
            "linha_pesquisa", "rank", "protocol", "nome", "media_projeto", "media_entrevista",
            "media_lingua", "notaFinal", "temCota", "tipoVaga",
        ])


class AllocationEngine:
    """Reads candidates and evaluations from the store and allocates seats."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def candidates(self, weights: ScoreWeights) -> List[Candidate]:
        evaluations = self.db.get_concluded_evaluations_by_protocol()
        return [
            Candidate.from_submission(sub, score_submission(evaluations.get(sub["protocol"], []), weights))
            for sub in self.db.get_candidates()
        ]

    def allocate(self, seat_config: Optional[Mapping[str, Any]]) -> AllocationResult:
        # Reject a bad configuration before touching the store
        parse_seat_config(seat_config)
        weights = ScoreWeights.from_settings(self.db.get_settings())
        allocation = allocate(self.candidates(weights), seat_config, weights.min_score)
        return AllocationResult(allocation=allocation, weights=weights, config=weights.as_dict())
