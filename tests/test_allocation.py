"""
Unit tests for the seat allocation engine.

pytest is required to run these tests.
"""

import pytest

from admission_desk.allocation import (
    AllocationEngine,
    Candidate,
    LineSeatConfig,
    SeatCategory,
    allocate,
    parse_seat_config,
    rank_candidates,
)
from admission_desk.database import DatabaseManager
from admission_desk.errors import AllocationConfigError
from admission_desk.scoring import SubmissionScore


def candidate(protocol, final, line="A", quota=False, institutional=False, averages=8.0):
    score = SubmissionScore(averages, averages, averages, final)
    return Candidate(protocol, f"Name {protocol}", line, score, has_quota=quota, institutional=institutional)


def scenario_candidates():
    """Ten eligible candidates: two quota holders, one institutional, seven plain."""
    return [
        candidate("P01", 9.9),
        candidate("P02", 9.8),
        candidate("P03", 9.7, quota=True),
        candidate("P04", 9.6),
        candidate("P05", 9.5, institutional=True),
        candidate("P06", 9.4),
        candidate("P07", 9.3, quota=True),
        candidate("P08", 9.2),
        candidate("P09", 9.1),
        candidate("P10", 9.0),
    ]


def test_reserved_and_open_pools():
    result = allocate(scenario_candidates(), {"A": {"total": 5, "cota": 2, "institucional": 1}}, 7.0)
    seats = result["A"]
    assert len(seats) == 5
    by_category = {}
    for seat in seats:
        by_category.setdefault(seat.category, []).append(seat.protocol)
    assert by_category[SeatCategory.QUOTA] == ["P03", "P07"]
    assert by_category[SeatCategory.INSTITUTIONAL] == ["P05"]
    assert by_category[SeatCategory.OPEN] == ["P01", "P02"]
    assert seats[0].rank == 3


def test_shortfall_is_reallocated():
    # Three quota seats but only two quota holders; one seat goes to the next best
    result = allocate(scenario_candidates(), {"A": {"total": 5, "cota": 3, "institucional": 1}}, 7.0)
    seats = result["A"]
    assert len(seats) == 5
    assert [s.protocol for s in seats if s.category is SeatCategory.OPEN] == ["P01"]
    assert [s.protocol for s in seats if s.category is SeatCategory.REALLOCATED] == ["P02"]


def test_never_over_allocates_or_duplicates():
    result = allocate(scenario_candidates()[:3], {"A": {"total": 5, "cota": 2}}, 7.0)
    protocols = [s.protocol for s in result["A"]]
    assert len(protocols) == 3
    assert len(set(protocols)) == len(protocols)


def test_ineligible_candidates_are_excluded():
    low = candidate("P99", 9.9, averages=6.0)
    result = allocate([low, candidate("P01", 8.0)], {"A": {"total": 2}}, 7.0)
    assert [s.protocol for s in result["A"]] == ["P01"]


def test_ties_broken_by_protocol():
    ranked = rank_candidates([candidate("P2", 8.0), candidate("P1", 8.0), candidate("P3", 9.0)])
    assert [c.protocol for c in ranked] == ["P3", "P1", "P2"]


def test_missing_line_config_admits_every_eligible():
    result = allocate([candidate("P01", 8.0, line="B"), candidate("P02", 7.5, line="B")], {}, 7.0)
    assert [s.protocol for s in result["B"]] == ["P01", "P02"]


@pytest.mark.parametrize("config", [
    {"A": {"total": -1}},
    {"A": {"total": 3, "cota": -1}},
    {"A": {"total": 2, "cota": 2, "institucional": 1}},
    {"A": {"total": "5"}},
    {"A": {"cota": 1}},
])
def test_invalid_config_rejected(config):
    with pytest.raises(AllocationConfigError):
        parse_seat_config(config)


def test_wrapped_config_accepted():
    config = parse_seat_config({"lines": {"A": {"total": 4, "cota": 1}}})
    assert config == {"A": LineSeatConfig(total=4, cota=1)}
    assert config["A"].open == 3


def test_engine_reads_store():
    db = DatabaseManager(':memory:')
    for protocol, score, line in (("P-1", 9.0, "Linha 1"), ("P-2", 8.0, "Linha 1"), ("P-3", 9.5, "")):
        db.conn.execute(
            "INSERT INTO submissions (protocol, hash, nome, cpf_hash, linha_pesquisa, cota_pcd) VALUES (?, ?, ?, ?, ?, ?)",
            (protocol, protocol, protocol, protocol, line, 1 if protocol == "P-2" else 0),
        )
        db.conn.execute(
            "INSERT INTO evaluations (submission_protocol, evaluator_num, phase, status, "
            "proj_introducao, int_apresentacao, lang_clareza, lang_dominio, lang_analise) "
            "VALUES (?, 1, 'completa', 'concluida', ?, ?, ?, ?, ?)",
            (protocol, score, score, score, score, score),
        )
    db.conn.commit()
    result = AllocationEngine(db).allocate({"Linha 1": {"total": 1, "cota": 1}})
    assert [s.protocol for s in result.allocation["Linha 1"]] == ["P-2"]
    # Submissions without a research line are grouped under the default line
    assert [s.protocol for s in result.allocation["Geral"]] == ["P-3"]
    frame = result.to_frame()
    assert set(frame["tipoVaga"]) == {"Cota", "Ampla Concorrência"}
    assert result.config["minScore"] == 7.0


def test_engine_rejects_bad_config_before_reading():
    db = DatabaseManager(':memory:')
    with pytest.raises(AllocationConfigError):
        AllocationEngine(db).allocate({"A": {"total": 1, "cota": 2}})
