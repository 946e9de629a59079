"""
Database management layer for the admissions desktop application.

This module defines the ``DatabaseManager`` class which encapsulates
all interactions with the local SQLite store. The store owns the
canonical copy of every record the application works with:
submissions, their evaluations, appeals, events and registrations,
the process calendar, FAQ entries, public file records, user accounts
and per-phase candidate status, plus a flat key/value settings map.

Records are created either by local user action or by the
reconciliation engine from a remote snapshot; the sync path never
deletes rows. Query helpers return plain dictionaries for the engines
and pandas DataFrames for tabular views.
"""

from __future__ import annotations

import datetime
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from admission_desk.config import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

# Closed set of submission statuses
STATUS_RECEIVED = "Recebida"
STATUS_APPROVED = "Deferida"
STATUS_REJECTED = "Indeferida"
SUBMISSION_STATUSES = (STATUS_RECEIVED, STATUS_APPROVED, STATUS_REJECTED)

# Evaluation statuses
EVAL_PENDING = "pendente"
EVAL_CONCLUDED = "concluida"
EVAL_ELIMINATED = "eliminado"

QUOTA_COLUMNS = (
    "cota_negro",
    "cota_indigena",
    "cota_quilombola",
    "cota_cigano",
    "cota_trans",
    "cota_pcd",
)

PROJECT_COLUMNS = (
    "proj_introducao",
    "proj_problema",
    "proj_justificativa",
    "proj_objetivos",
    "proj_revisao",
    "proj_metodos",
    "proj_cronograma",
    "proj_referencias",
)
INTERVIEW_COLUMNS = ("int_apresentacao", "int_historico", "int_defesa", "int_justificativa")
LANGUAGE_COLUMNS = ("lang_clareza", "lang_dominio", "lang_analise")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'admin',
    display_name TEXT,
    email TEXT,
    line TEXT,
    evaluator_num INTEGER,
    active INTEGER DEFAULT 1,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    protocol TEXT UNIQUE NOT NULL,
    hash TEXT NOT NULL,
    status TEXT DEFAULT 'Recebida',
    year INTEGER,
    nome TEXT NOT NULL,
    nome_social TEXT,
    cpf_hash TEXT NOT NULL,
    cpf_last4 TEXT,
    data_nascimento TEXT,
    rg TEXT,
    orgao_emissor TEXT,
    email TEXT,
    telefone TEXT,
    endereco TEXT,
    cidade TEXT,
    estado TEXT,
    cep TEXT,
    curso_graduacao TEXT,
    instituicao TEXT,
    ano_conclusao TEXT,
    vaga_institucional INTEGER DEFAULT 0,
    cooperacao_sdr INTEGER DEFAULT 0,
    cota_negro INTEGER DEFAULT 0,
    cota_indigena INTEGER DEFAULT 0,
    cota_quilombola INTEGER DEFAULT 0,
    cota_cigano INTEGER DEFAULT 0,
    cota_trans INTEGER DEFAULT 0,
    cota_pcd INTEGER DEFAULT 0,
    titulo_pt TEXT,
    titulo_en TEXT,
    linha_pesquisa TEXT,
    palavras_chave TEXT,
    resumo TEXT,
    justificativa TEXT,
    introducao TEXT,
    problema TEXT,
    objetivos TEXT,
    revisao_literatura TEXT,
    metodologia TEXT,
    cronograma TEXT,
    referencias TEXT,
    data TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS evaluations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    submission_protocol TEXT NOT NULL,
    evaluator_id INTEGER,
    evaluator_line TEXT,
    evaluator_num INTEGER,
    phase TEXT NOT NULL,
    proj_introducao REAL,
    proj_problema REAL,
    proj_justificativa REAL,
    proj_objetivos REAL,
    proj_revisao REAL,
    proj_metodos REAL,
    proj_cronograma REAL,
    proj_referencias REAL,
    proj_media REAL,
    proj_parecer TEXT,
    int_apresentacao REAL,
    int_historico REAL,
    int_defesa REAL,
    int_justificativa REAL,
    int_media REAL,
    int_parecer TEXT,
    lang_clareza REAL,
    lang_dominio REAL,
    lang_analise REAL,
    lang_media REAL,
    lang_parecer TEXT,
    status TEXT DEFAULT 'pendente',
    data TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE(submission_protocol, evaluator_num, phase)
);

CREATE TABLE IF NOT EXISTS appeals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    protocol TEXT UNIQUE NOT NULL,
    submission_protocol TEXT NOT NULL,
    nome TEXT,
    cpf_hash TEXT,
    email TEXT,
    etapa TEXT NOT NULL,
    decisao_contestacao TEXT,
    argumentacao TEXT NOT NULL,
    status TEXT DEFAULT 'Recebido',
    motivo_decisao TEXT,
    data TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS candidate_phase_status (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    submission_protocol TEXT NOT NULL,
    phase TEXT NOT NULL,
    status TEXT NOT NULL,
    score REAL,
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE(submission_protocol, phase)
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT,
    time TEXT,
    location TEXT,
    max_participants INTEGER,
    image_path TEXT,
    active INTEGER DEFAULT 1,
    data TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE(title, date)
);

CREATE TABLE IF NOT EXISTS event_registrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    nome TEXT NOT NULL,
    cpf_hash TEXT,
    email TEXT,
    telefone TEXT,
    confirmed INTEGER DEFAULT 0,
    certificate_issued INTEGER DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now')),
    FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE,
    UNIQUE(event_id, cpf_hash)
);

CREATE TABLE IF NOT EXISTS process_calendar (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    year INTEGER NOT NULL,
    phase TEXT NOT NULL,
    label TEXT NOT NULL,
    start_date TEXT,
    end_date TEXT,
    active INTEGER DEFAULT 1,
    UNIQUE(year, phase)
);

CREATE TABLE IF NOT EXISTS public_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL,
    original_name TEXT UNIQUE,
    category TEXT,
    description TEXT,
    file_data BLOB,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS faq (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    section TEXT NOT NULL,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    sort_order INTEGER DEFAULT 0,
    active INTEGER DEFAULT 1,
    UNIQUE(section, question)
);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    action TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    details TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);
"""


class DatabaseManager:
    """A high-level interface around the SQLite store of the admissions process."""

    def __init__(self, db_path: str) -> None:
        """
        Open the database connection and ensure all tables exist.

        Parameters
        ----------
        db_path : str
            Path to the SQLite database file. Use ``':memory:'`` to
            create a transient in-memory database (useful for testing).
        """
        # The auto-sync job writes from the scheduler thread; the sync
        # lock guarantees a single writer at a time.
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_tables()
        self._seed_defaults()

    def close(self) -> None:
        self.conn.close()

    def create_tables(self) -> None:
        """Create the tables if they do not already exist."""
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def _seed_defaults(self) -> None:
        defaults = dict(DEFAULT_SETTINGS)
        defaults["app.year"] = str(datetime.date.today().year)
        self.conn.executemany(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            list(defaults.items()),
        )
        self.conn.commit()

    # ------------------------------------------------------------------
    # Settings and audit
    # ------------------------------------------------------------------
    def get_settings(self) -> Dict[str, str]:
        """Return the whole settings map."""
        rows = self.conn.execute("SELECT key, value FROM settings").fetchall()
        return {row["key"]: row["value"] for row in rows}

    def update_settings(self, updates: Dict[str, Any]) -> Dict[str, str]:
        """Insert or overwrite settings; values are stored as text."""
        self.conn.executemany(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            [(key, str(value)) for key, value in updates.items()],
        )
        self.conn.commit()
        return self.get_settings()

    def audit(
        self,
        user_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        details: Union[str, Dict[str, Any], None] = None,
    ) -> None:
        """Append an entry to the audit log.

        The audit log is a sink: a failed write is logged and never
        interrupts the operation being audited.
        """
        payload = details if isinstance(details, str) or details is None else json.dumps(details)
        try:
            self.conn.execute(
                "INSERT INTO audit_log (user_id, action, entity_type, entity_id, details) VALUES (?, ?, ?, ?, ?)",
                (user_id, action, entity_type, entity_id, payload),
            )
            self.conn.commit()
        except sqlite3.Error:
            logger.exception("Audit write failed for %s %s", action, entity_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def count_rows(self, table: str) -> int:
        """Return the number of rows of one of the known tables."""
        if table not in _TABLES:
            raise ValueError(f"Unknown table '{table}'")
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def get_submission(self, protocol: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM submissions WHERE protocol = ?", (protocol,)).fetchone()
        return dict(row) if row else None

    def get_candidates(self) -> List[Dict[str, Any]]:
        """Return every submission that has not been rejected, ordered by protocol."""
        rows = self.conn.execute(
            "SELECT * FROM submissions WHERE status != ? ORDER BY protocol",
            (STATUS_REJECTED,),
        ).fetchall()
        return [dict(row) for row in rows]

    def get_evaluations(
        self,
        protocol: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Retrieve evaluation rows.

        Parameters
        ----------
        protocol : Optional[str]
            Submission protocol to filter by. If ``None``, all
            submissions are returned.
        status : Optional[str]
            Evaluation status to filter by (``'concluida'`` for the
            rows that count towards scoring).

        Returns
        -------
        list of dict
            Evaluation rows ordered by protocol, evaluator number and phase.
        """
        query = "SELECT * FROM evaluations"
        conditions: List[str] = []
        params: List[str] = []
        if protocol:
            conditions.append("submission_protocol = ?")
            params.append(protocol)
        if status:
            conditions.append("status = ?")
            params.append(status)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY submission_protocol, evaluator_num, phase"
        return [dict(row) for row in self.conn.execute(query, params).fetchall()]

    def get_concluded_evaluations_by_protocol(self) -> Dict[str, List[Dict[str, Any]]]:
        """Group every concluded evaluation under its submission protocol."""
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in self.get_evaluations(status=EVAL_CONCLUDED):
            grouped.setdefault(row["submission_protocol"], []).append(row)
        return grouped

    def get_calendar(self, year: Optional[int] = None) -> pd.DataFrame:
        """Return the calendar phases, optionally for a single year."""
        query = "SELECT year, phase, label, start_date, end_date, active FROM process_calendar"
        params: List[int] = []
        if year is not None:
            query += " WHERE year = ?"
            params.append(year)
        query += " ORDER BY year, start_date, phase"
        return pd.read_sql_query(query, self.conn, params=params)

    def get_faq(self) -> pd.DataFrame:
        """Return the active FAQ entries in display order."""
        return pd.read_sql_query(
            "SELECT section, question, answer FROM faq WHERE active = 1 ORDER BY sort_order, id",
            self.conn,
        )

    def get_results(self, line: Optional[str] = None) -> pd.DataFrame:
        """
        Consolidated scoring results for every submission.

        Parameters
        ----------
        line : Optional[str]
            Research line to filter by. If ``None``, all lines are
            returned.

        Returns
        -------
        pandas.DataFrame
            One row per submission with the pooled category averages
            (``None`` when there is no data), the weighted final score
            and the quota flag, sorted descending by final score.
        """
        from admission_desk.scoring import ScoreWeights, score_submission

        weights = ScoreWeights.from_settings(self.get_settings())
        evaluations = self.get_concluded_evaluations_by_protocol()
        query = "SELECT * FROM submissions"
        params: List[str] = []
        if line:
            query += " WHERE linha_pesquisa = ?"
            params.append(line)
        records = []
        for row in self.conn.execute(query, params).fetchall():
            submission = dict(row)
            scored = score_submission(evaluations.get(submission["protocol"], []), weights)
            records.append({
                "Protocol": submission["protocol"],
                "Name": submission["nome"],
                "Line": submission["linha_pesquisa"] or "",
                "Status": submission["status"],
                "Project": scored.project_average,
                "Interview": scored.interview_average,
                "Language": scored.language_average,
                "Final": scored.final_score,
                "Quota": any(submission[col] for col in QUOTA_COLUMNS),
                "Institutional": bool(submission["vaga_institucional"]),
            })
        columns = [
            "Protocol", "Name", "Line", "Status", "Project", "Interview",
            "Language", "Final", "Quota", "Institutional",
        ]
        df = pd.DataFrame(records, columns=columns)
        if not df.empty:
            df = df.sort_values(["Final", "Protocol"], ascending=[False, True], kind="mergesort")
            df = df.reset_index(drop=True)
        return df

    def get_research_lines(self) -> List[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT linha_pesquisa FROM submissions WHERE linha_pesquisa != '' ORDER BY linha_pesquisa"
        ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Phase workflow
    # ------------------------------------------------------------------
    def advance_phase(self, protocol: str, phase: str, status: str) -> None:
        """Record the outcome of ``phase`` for a submission."""
        self.conn.execute(
            """
            INSERT INTO candidate_phase_status (submission_protocol, phase, status)
            VALUES (?, ?, ?)
            ON CONFLICT(submission_protocol, phase)
            DO UPDATE SET status = excluded.status, updated_at = datetime('now')
            """,
            (protocol, phase, status),
        )
        self.conn.commit()
        self.audit(None, "phase_advanced", "workflow", protocol, {"phase": phase, "status": status})

    def get_phase_status(self, protocol: str) -> Dict[str, str]:
        """Return ``{phase: status}`` for a submission."""
        rows = self.conn.execute(
            "SELECT phase, status FROM candidate_phase_status WHERE submission_protocol = ? ORDER BY id",
            (protocol,),
        ).fetchall()
        return {row["phase"]: row["status"] for row in rows}


_TABLES = {
    "users",
    "settings",
    "submissions",
    "evaluations",
    "appeals",
    "candidate_phase_status",
    "events",
    "event_registrations",
    "process_calendar",
    "public_files",
    "faq",
    "audit_log",
}
