"""
Unit tests for the payload normalizer.

Every entity kind accepts several remote shapes; these tests check that
equivalent payloads in different shapes produce equal canonical records
and that unusable records are reported instead of raised.

pytest is required to run these tests.
"""

import hashlib

import pytest

from admission_desk.normalizer import (
    CalendarShape,
    EntityKind,
    EvaluationShape,
    FaqShape,
    SubmissionShape,
    detect_shape,
    normalize,
    normalize_collection,
    normalize_record,
    parse_score_key,
)


def records(results):
    return [r.record for r in results if r.ok]


def test_faq_shapes_are_equivalent():
    text = "Registrations are online only."
    as_text = normalize_collection(EntityKind.FAQ, text)
    sectioned = normalize_collection(
        EntityKind.FAQ, {"sections": [{"items": [{"question": "FAQ", "answer": text}]}]}
    )
    flat = normalize_collection(EntityKind.FAQ, [{"question": "FAQ", "answer": text}])
    assert records(as_text) == records(sectioned) == records(flat)
    assert len(records(as_text)) == 1
    assert detect_shape(EntityKind.FAQ, text) is FaqShape.TEXT
    assert detect_shape(EntityKind.FAQ, {"sections": []}) is FaqShape.SECTIONED
    assert detect_shape(EntityKind.FAQ, []) is FaqShape.FLAT


def test_faq_sections_keep_titles_and_order():
    payload = {"sections": [
        {"title": "Inscrição", "items": [{"question": "Q1", "answer": "A1"}, {"question": "Q2", "answer": "A2"}]},
        {"title": "Resultado", "items": [{"question": "Q3", "answer": "A3"}, {}]},
    ]}
    results = normalize_collection(EntityKind.FAQ, payload)
    faq = records(results)
    assert [(f.section, f.question, f.sort_order) for f in faq] == [
        ("Inscrição", "Q1", 0), ("Inscrição", "Q2", 1), ("Resultado", "Q3", 2),
    ]
    assert len([r for r in results if not r.ok]) == 1


def test_dynamic_evaluation_project_only():
    raw = {
        "protocol": "PPG-2025-0001",
        "projectScores": {
            "proj_avaliador1_introducao": 8,
            "proj_avaliador1_problema": 7,
            "proj_avaliador1_justificativa": 9,
            "proj_avaliador1_objetivos": 8,
            "proj_avaliador1_revisao": 6,
            "proj_avaliador1_metodos": 7,
            "proj_avaliador1_cronograma": 10,
            "proj_avaliador1_referencias": 9,
        },
    }
    assert detect_shape(EntityKind.EVALUATIONS, raw) is EvaluationShape.DYNAMIC
    evaluations = records(normalize_record(EntityKind.EVALUATIONS, raw))
    assert len(evaluations) == 1
    evaluation = evaluations[0]
    assert evaluation.evaluator_num == 1
    assert evaluation.submission_protocol == "PPG-2025-0001"
    assert evaluation.project_average == pytest.approx(8.0)
    assert evaluation.interview_average == 0
    assert evaluation.language_average == 0


def test_dynamic_evaluation_splits_evaluators():
    raw = {
        "protocol": "P-1",
        "projectScores": {"proj_avaliador2_metodos": "7,5", "proj_avaliador1_metodos": 6, "unrelated": 1},
        "languageScores": {"lang_avaliador2_clareza": 10, "lang_avaliador2_dominio": 10, "lang_avaliador2_analise": 10},
        "interviewScores": {"int_avaliador1_parecer": "Good"},
    }
    evaluations = records(normalize_record(EntityKind.EVALUATIONS, raw))
    assert [e.evaluator_num for e in evaluations] == [1, 2]
    first, second = evaluations
    assert first.proj_metodos == 6
    assert first.int_parecer == "Good"
    assert second.proj_metodos == pytest.approx(7.5)
    assert second.lang_media == pytest.approx(10.0)
    assert first.phase == second.phase == "completa"


def test_non_numeric_score_skips_record():
    raw = {"protocol": "P-1", "projectScores": {"proj_avaliador1_metodos": "abc"}}
    results = normalize_record(EntityKind.EVALUATIONS, raw)
    assert len(results) == 1
    assert not results[0].ok
    assert "proj_avaliador1_metodos" in str(results[0].skip)


def test_flat_evaluation():
    raw = {"submission_protocol": "P-1", "evaluator_num": 2, "phase": "projeto", "proj_metodos": 8}
    assert detect_shape(EntityKind.EVALUATIONS, raw) is EvaluationShape.FLAT
    evaluation = normalize(EntityKind.EVALUATIONS, raw)
    assert evaluation.key == "P-1/2/projeto"
    assert evaluation.proj_metodos == 8
    assert evaluation.proj_introducao == 0


def test_parse_score_key():
    key = parse_score_key("int_avaliador12_defesa")
    assert (key.evaluator, key.category, key.column) == (12, "int", "int_defesa")
    assert parse_score_key("proj_avaliador1_proj_intro").column == "proj_introducao"
    assert parse_score_key("proj_avaliador1_unknown") is None
    assert parse_score_key("total") is None


def test_calendar_map_and_list_agree():
    as_map = {
        "year": 2025,
        "updatedAt": "2025-01-01T00:00:00Z",
        "phases": {"INSCRICAO": {"label": "Inscrições", "startISO": "2025-01-10T03:00:00Z", "endISO": "2025-02-10"}},
    }
    as_list = [{"phase": "INSCRICAO", "label": "Inscrições", "start": "2025-01-10 08:00", "end": "2025-02-10T23:59:59"}]
    assert detect_shape(EntityKind.CALENDAR, as_map) is CalendarShape.MAP
    assert detect_shape(EntityKind.CALENDAR, as_list) is CalendarShape.LIST
    from_map = records(normalize_collection(EntityKind.CALENDAR, as_map))
    from_list = records(normalize_collection(EntityKind.CALENDAR, as_list, year=2025))
    assert from_map == from_list
    phase = from_map[0]
    assert (phase.year, phase.start_date, phase.end_date) == (2025, "2025-01-10", "2025-02-10")


def test_calendar_bad_date_is_skipped():
    results = normalize_collection(EntityKind.CALENDAR, {"A": {"startISO": "soon"}, "B": {"label": "B"}}, year=2025)
    assert [r.ok for r in results] == [False, True]


def test_evaluators_map_and_list_agree():
    as_map = {"ana": {"name": "Ana", "line": "Linha 1", "num": 1, "pass": "secret"}}
    as_list = [{"username": "ana", "name": "Ana", "line": "Linha 1", "num": "1"}]
    from_map = records(normalize_collection(EntityKind.EVALUATORS, as_map))
    from_list = records(normalize_collection(EntityKind.EVALUATORS, as_list))
    assert from_map == from_list
    assert "secret" not in repr(from_map[0])


def test_nested_and_flat_submissions_agree():
    nested = {
        "protocol": "PPG-1",
        "status": "deferida",
        "identified": {"nome": "Maria", "cpf": "123.456.789-01", "cotas": ["negro"], "cidade_estado": "Recife / PE"},
        "project": {"area": "Linha 2", "titulo_pt": "Projeto"},
    }
    flat = {
        "protocol": "PPG-1",
        "status": "Deferida",
        "nome": "Maria",
        "cpf": "12345678901",
        "cota_negro": True,
        "cidade": "Recife",
        "estado": "PE",
        "linha_pesquisa": "Linha 2",
        "titulo_pt": "Projeto",
    }
    assert detect_shape(EntityKind.SUBMISSIONS, nested) is SubmissionShape.NESTED
    assert detect_shape(EntityKind.SUBMISSIONS, flat) is SubmissionShape.FLAT
    a = normalize(EntityKind.SUBMISSIONS, nested)
    b = normalize(EntityKind.SUBMISSIONS, flat)
    fields = ("protocol", "nome", "status", "cpf_hash", "cpf_last4", "linha_pesquisa", "titulo_pt", "cidade", "estado", "cota_negro")
    assert [getattr(a, f) for f in fields] == [getattr(b, f) for f in fields]
    assert a.cpf_hash == hashlib.sha256(b"12345678901").hexdigest()
    assert a.cpf_last4 == "8901"
    assert a.status == "Deferida"
    assert a.cota_negro == 1 and a.cota_pcd == 0


def test_submission_unknown_status_and_missing_protocol():
    results = normalize_collection(EntityKind.SUBMISSIONS, [
        {"protocol": "P-1", "status": "Arquivada"},
        {"nome": "No protocol"},
        "not an object",
        {"protocol": "P-2"},
    ])
    assert [r.ok for r in results] == [False, False, False, True]
    assert "Arquivada" in str(results[0].skip)


def test_event_registrations_without_cpf_dropped():
    event = normalize(EntityKind.EVENTS, {
        "title": "Aula inaugural",
        "date": "2025-03-01",
        "status": "open",
        "registrations": [{"nome": "A", "cpf": "111.222.333-44", "confirmed": True}, {"nome": "B"}],
    })
    assert event.active == 1
    assert len(event.registrations) == 1
    assert event.registrations[0].confirmed == 1


def test_collection_must_be_a_list():
    results = normalize_collection(EntityKind.APPEALS, {"protocol": "R-1"})
    assert len(results) == 1 and not results[0].ok


def test_absent_fields_are_left_unset():
    submission = normalize(EntityKind.SUBMISSIONS, {"protocol": "P-1", "identified": {}})
    assert submission.nome == ""
    assert submission.vaga_institucional is None
    assert submission.cota_negro is None
    declared = normalize(EntityKind.SUBMISSIONS, {"protocol": "P-1", "identified": {"cotas": []}})
    assert declared.cota_negro == 0

    account = records(normalize_collection(EntityKind.EVALUATORS, {"ana": {"pass": "x", "line": "L1"}}))[0]
    assert account.display_name == ""
    assert account.evaluator_num is None
    assert normalize(EntityKind.PUBLIC_FILES, {"title": "Edital.pdf"}).category == ""
    assert normalize(EntityKind.EVENTS, {"title": "Palestra"}).max_participants is None
