"""
Unit tests for the scoring rules.

pytest is required to run these tests.
"""

import pytest

from admission_desk.scoring import (
    ScoreWeights,
    evaluation_averages,
    final_score,
    is_eligible,
    language_weighted,
    score_submission,
)


def evaluation(project=None, interview=None, language=None):
    """Build an evaluation row with uniform sub-scores per category."""
    row = {}
    if project is not None:
        for col in ("proj_introducao", "proj_problema", "proj_justificativa", "proj_objetivos",
                    "proj_revisao", "proj_metodos", "proj_cronograma", "proj_referencias"):
            row[col] = project
    if interview is not None:
        for col in ("int_apresentacao", "int_historico", "int_defesa", "int_justificativa"):
            row[col] = interview
    if language is not None:
        clarity, command, analysis = language
        row.update(lang_clareza=clarity, lang_dominio=command, lang_analise=analysis)
    return row


def test_language_weighting():
    assert language_weighted(10, 5, 0) == pytest.approx(5.0)
    assert language_weighted(0, 5, 10) == pytest.approx(5.0)
    assert language_weighted(None, None, None) is None
    # Missing parts count as zero once any part is present
    assert language_weighted(None, 10, None) == pytest.approx(4.0)


def test_evaluation_averages_rounded():
    row = evaluation(project=7.333, interview=8.0, language=(9, 8, 7))
    averages = evaluation_averages(row)
    assert averages["proj_media"] == pytest.approx(7.33)
    assert averages["int_media"] == pytest.approx(8.0)
    assert averages["lang_media"] == pytest.approx(8.0)


def test_score_submission_pools_evaluators():
    weights = ScoreWeights()
    evals = [
        evaluation(project=8, interview=6, language=(10, 10, 10)),
        evaluation(project=10, interview=8, language=(6, 6, 6)),
    ]
    score = score_submission(evals, weights)
    assert score.project_average == pytest.approx(9.0)
    assert score.interview_average == pytest.approx(7.0)
    assert score.language_average == pytest.approx(8.0)
    assert score.final_score == pytest.approx((9 * 4 + 7 * 5 + 8 * 1) / 10)


def test_missing_category_is_none_but_counts_as_zero():
    weights = ScoreWeights()
    score = score_submission([evaluation(project=10)], weights)
    assert score.project_average == pytest.approx(10.0)
    assert score.interview_average is None
    assert score.language_average is None
    assert score.final_score == pytest.approx(4.0)


def test_no_evaluations():
    score = score_submission([], ScoreWeights())
    assert score.project_average is None
    assert score.interview_average is None
    assert score.language_average is None
    assert score.final_score == 0


def test_zero_weights_give_zero_final():
    weights = ScoreWeights(project=0, interview=0, language=0)
    assert final_score(9, 9, 9, weights) == 0


def test_eligibility_requires_every_category():
    weights = ScoreWeights()
    score = score_submission([evaluation(project=9, interview=9, language=(2, 2, 2))], weights)
    # High final score but language below the minimum
    assert score.final_score > 7
    assert not is_eligible(score, weights.min_score)
    good = score_submission([evaluation(project=9, interview=9, language=(8, 8, 8))], weights)
    assert good.is_eligible(weights.min_score)


def test_weights_from_settings():
    weights = ScoreWeights.from_settings({
        "evaluation.proj_weight": "2",
        "evaluation.int_weight": "",
        "evaluation.min_score": "6.5",
    })
    assert weights.project == 2
    assert weights.interview == 5
    assert weights.language == 1
    assert weights.min_score == 6.5
    assert weights.as_dict() == {"projW": 2, "intW": 5, "langW": 1, "minScore": 6.5}
