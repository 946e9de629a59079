"""
Unit tests for the admissions database layer.

These tests exercise the core logic of the ``DatabaseManager``:

* Schema creation and seeding of the default settings.
* Settings updates and the audit log sink.
* Candidate and evaluation queries used by the scoring engines.
* The consolidated results table returned as a pandas DataFrame.

pytest is required to run these tests.
"""

import pytest

from admission_desk.database import EVAL_CONCLUDED, EVAL_PENDING, STATUS_REJECTED, DatabaseManager


def add_submission(db, protocol, line="Linha 1", status="Recebida", **extra):
    values = {
        "protocol": protocol,
        "hash": protocol,
        "nome": f"Candidate {protocol}",
        "cpf_hash": f"h{protocol}",
        "status": status,
        "linha_pesquisa": line,
    }
    values.update(extra)
    cols = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    db.conn.execute(f"INSERT INTO submissions ({cols}) VALUES ({marks})", list(values.values()))
    db.conn.commit()


def add_evaluation(db, protocol, num, score, status=EVAL_CONCLUDED, phase="completa"):
    cols = [
        "proj_introducao", "proj_problema", "proj_justificativa", "proj_objetivos",
        "proj_revisao", "proj_metodos", "proj_cronograma", "proj_referencias",
        "int_apresentacao", "int_historico", "int_defesa", "int_justificativa",
        "lang_clareza", "lang_dominio", "lang_analise",
    ]
    db.conn.execute(
        f"INSERT INTO evaluations (submission_protocol, evaluator_num, phase, status, {', '.join(cols)}) "
        f"VALUES (?, ?, ?, ?, {', '.join('?' for _ in cols)})",
        [protocol, num, phase, status, *([score] * len(cols))],
    )
    db.conn.commit()


def test_default_settings_seeded():
    db = DatabaseManager(':memory:')
    settings = db.get_settings()
    assert settings["evaluation.proj_weight"] == "4"
    assert settings["evaluation.int_weight"] == "5"
    assert settings["evaluation.lang_weight"] == "1"
    assert settings["evaluation.min_score"] == "7.0"
    assert settings["app.year"].isdigit()


def test_update_settings_overwrites_and_stringifies():
    db = DatabaseManager(':memory:')
    db.update_settings({"evaluation.min_score": 6, "sync.enabled": "1"})
    settings = db.get_settings()
    assert settings["evaluation.min_score"] == "6"
    assert settings["sync.enabled"] == "1"


def test_count_rows_rejects_unknown_table():
    db = DatabaseManager(':memory:')
    assert db.count_rows("submissions") == 0
    with pytest.raises(ValueError):
        db.count_rows("submissions; DROP TABLE users")


def test_get_candidates_excludes_rejected_submissions():
    db = DatabaseManager(':memory:')
    add_submission(db, "P-002")
    add_submission(db, "P-001")
    add_submission(db, "P-003", status=STATUS_REJECTED)
    protocols = [c["protocol"] for c in db.get_candidates()]
    assert protocols == ["P-001", "P-002"]


def test_concluded_evaluations_grouped_by_protocol():
    db = DatabaseManager(':memory:')
    add_submission(db, "P-001")
    add_evaluation(db, "P-001", 1, 8.0)
    add_evaluation(db, "P-001", 2, 9.0)
    add_evaluation(db, "P-001", 3, 1.0, status=EVAL_PENDING)
    grouped = db.get_concluded_evaluations_by_protocol()
    assert list(grouped) == ["P-001"]
    assert [row["evaluator_num"] for row in grouped["P-001"]] == [1, 2]


def test_get_results_sorted_by_final_score():
    db = DatabaseManager(':memory:')
    add_submission(db, "P-001", cota_negro=1)
    add_submission(db, "P-002", line="Linha 2")
    add_submission(db, "P-003")
    add_evaluation(db, "P-001", 1, 7.0)
    add_evaluation(db, "P-002", 1, 9.0)
    df = db.get_results()
    assert list(df["Protocol"]) == ["P-002", "P-001", "P-003"]
    first = df.iloc[0]
    assert first["Final"] == pytest.approx(9.0)
    assert bool(df.iloc[1]["Quota"]) is True
    # No evaluation at all: category averages are absent, final is zero
    last = df.iloc[2]
    assert last["Project"] is None or last["Project"] != last["Project"]
    assert last["Final"] == 0

    only_line2 = db.get_results("Linha 2")
    assert list(only_line2["Protocol"]) == ["P-002"]


def test_research_lines_distinct_and_sorted():
    db = DatabaseManager(':memory:')
    add_submission(db, "P-001", line="Linha 2")
    add_submission(db, "P-002", line="Linha 1")
    add_submission(db, "P-003", line="Linha 2")
    assert db.get_research_lines() == ["Linha 1", "Linha 2"]


def test_advance_phase_upserts_and_audits():
    db = DatabaseManager(':memory:')
    add_submission(db, "P-001")
    db.advance_phase("P-001", "projeto", "aprovado")
    db.advance_phase("P-001", "projeto", "reprovado")
    assert db.get_phase_status("P-001") == {"projeto": "reprovado"}
    assert db.count_rows("audit_log") == 2


def test_calendar_and_faq_frames():
    db = DatabaseManager(':memory:')
    db.conn.execute(
        "INSERT INTO process_calendar (year, phase, label, start_date) VALUES (2025, 'INSCRICAO', 'Inscrições', '2025-01-10')"
    )
    db.conn.execute("INSERT INTO faq (section, question, answer, active) VALUES ('general', 'Q1', 'A1', 1)")
    db.conn.execute("INSERT INTO faq (section, question, answer, active) VALUES ('general', 'Q2', 'A2', 0)")
    db.conn.commit()
    calendar = db.get_calendar(2025)
    assert list(calendar["phase"]) == ["INSCRICAO"]
    assert db.get_calendar(2024).empty
    faq = db.get_faq()
    assert list(faq["question"]) == ["Q1"]
