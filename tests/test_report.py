"""
Tests for the PDF report and the synthetic data generator.

pytest is required to run these tests.
"""

from admission_desk.data_generator import generate_snapshot, generate_submissions
from admission_desk.database import DatabaseManager
from admission_desk.report import ReportGenerator
from admission_desk.sync import SyncService


def test_generate_submissions_shape():
    df = generate_submissions(5, ["Linha 1", "Linha 2"], id_start=10, year=2025)
    assert len(df) == 5
    assert list(df["protocol"])[:2] == ["PPG-2025-0010", "PPG-2025-0011"]
    assert set(df["linha_pesquisa"]) == {"Linha 1", "Linha 2"}


def test_snapshot_is_reproducible():
    a = generate_snapshot({"Linha 1": 4}, seed=1, year=2025)
    b = generate_snapshot({"Linha 1": 4}, seed=1, year=2025)
    assert a["submissions"] == b["submissions"]
    assert a["evaluations"] == b["evaluations"]


def test_report_written(tmp_path):
    db = DatabaseManager(':memory:')
    sync = SyncService(db)
    sync.apply_snapshot(generate_snapshot({"Linha 1": 6, "Linha 2": 4}, seed=3, year=2025))
    output = tmp_path / "report.pdf"
    result = ReportGenerator(db).generate(str(output), {"Linha 1": {"total": 3, "cota": 1}})
    assert output.exists()
    assert output.read_bytes().startswith(b"%PDF")
    assert len(result.allocation.get("Linha 1", [])) <= 3
    sync.close()


def test_report_on_empty_store(tmp_path):
    db = DatabaseManager(':memory:')
    output = tmp_path / "empty.pdf"
    result = ReportGenerator(db).generate(str(output))
    assert output.exists()
    assert result.allocation == {}
