"""
Natural-key upsert of canonical records into the local store.

Every entity kind declares which columns form its natural key and who
owns each remaining column:

* remote-owned columns are always overwritten from the record;
* merged columns are overwritten only when the remote supplies a value,
  so an empty remote field never blanks a locally richer one;
* sticky columns only ever switch on (registration confirmation);
* local columns are written when the row is inserted and left alone
  afterwards.

Records are applied one at a time and committed individually: a bad
record is rolled back and reported while the rest of the batch goes on.
A row only counts as synced when it was inserted or at least one of its
columns actually changed, so re-applying the same snapshot counts zero.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Set, Tuple, Union

from admission_desk.database import DatabaseManager
from admission_desk.normalizer import (
    CanonicalRecord,
    EntityKind,
    EventRecord,
    RecordError,
    RecordResult,
    SkipReason,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ownership:
    table: str
    key: Tuple[str, ...]
    remote: Tuple[str, ...] = ()
    merged: Tuple[str, ...] = ()
    sticky: Tuple[str, ...] = ()
    local: Tuple[str, ...] = ()
    insert_defaults: Mapping[str, Any] = field(default_factory=dict)
    # column -> column whose value fills it on insert when the record leaves it empty
    insert_fallbacks: Mapping[str, str] = field(default_factory=dict)
    # key columns that may be empty; stored and matched as ""
    optional_key: Tuple[str, ...] = ()
    touch: bool = False  # table has an ``updated_at`` column

    @property
    def columns(self) -> Tuple[str, ...]:
        return self.key + self.remote + self.merged + self.sticky + self.local


_SUBMISSION_MERGED = (
    "hash", "nome", "cpf_hash", "cpf_last4", "email", "linha_pesquisa", "titulo_pt", "titulo_en",
    "nome_social", "data_nascimento", "rg", "orgao_emissor", "endereco", "cidade", "estado", "cep",
    "telefone", "curso_graduacao", "instituicao", "ano_conclusao", "vaga_institucional",
    "cooperacao_sdr", "cota_negro", "cota_indigena", "cota_quilombola", "cota_cigano", "cota_trans",
    "cota_pcd", "palavras_chave", "resumo", "justificativa", "introducao", "problema", "objetivos",
    "revisao_literatura", "metodologia", "cronograma", "referencias",
)

_EVALUATION_REMOTE = (
    "proj_introducao", "proj_problema", "proj_justificativa", "proj_objetivos", "proj_revisao",
    "proj_metodos", "proj_cronograma", "proj_referencias", "proj_media", "proj_parecer",
    "int_apresentacao", "int_historico", "int_defesa", "int_justificativa", "int_media", "int_parecer",
    "lang_clareza", "lang_dominio", "lang_analise", "lang_media", "lang_parecer",
    "status", "data",
)

FIELD_OWNERSHIP: Dict[EntityKind, Ownership] = {
    EntityKind.SUBMISSIONS: Ownership(
        table="submissions",
        key=("protocol",),
        remote=("status", "data"),
        merged=_SUBMISSION_MERGED,
        local=("created_at",),
        insert_defaults={"nome": "Sem nome"},
        touch=True,
    ),
    EntityKind.EVALUATIONS: Ownership(
        table="evaluations",
        key=("submission_protocol", "evaluator_num", "phase"),
        remote=_EVALUATION_REMOTE,
        merged=("evaluator_line",),
        local=("created_at",),
        touch=True,
    ),
    EntityKind.APPEALS: Ownership(
        table="appeals",
        key=("protocol",),
        remote=("status", "motivo_decisao", "data"),
        merged=(
            "submission_protocol", "nome", "cpf_hash", "email", "etapa", "argumentacao",
            "decisao_contestacao",
        ),
        local=("created_at",),
        touch=True,
    ),
    EntityKind.EVENTS: Ownership(
        table="events",
        key=("title", "date"),
        remote=("active", "data"),
        merged=("description", "time", "location", "max_participants", "image_path"),
        optional_key=("date",),
        touch=True,
    ),
    EntityKind.CALENDAR: Ownership(
        table="process_calendar",
        key=("year", "phase"),
        remote=("label", "start_date", "end_date", "active"),
    ),
    EntityKind.FAQ: Ownership(
        table="faq",
        key=("section", "question"),
        remote=("answer", "sort_order", "active"),
    ),
    EntityKind.PUBLIC_FILES: Ownership(
        table="public_files",
        key=("original_name",),
        merged=("filename", "category", "description"),
        insert_defaults={"category": "resultado"},
    ),
    EntityKind.EVALUATORS: Ownership(
        table="users",
        key=("username",),
        merged=("display_name", "email", "line", "evaluator_num"),
        local=("role",),
        # Credentials are stored by the authentication layer, never by sync
        insert_defaults={"password_hash": "sync-imported", "active": 1},
        insert_fallbacks={"display_name": "username"},
        touch=True,
    ),
    EntityKind.PHASE_STATUS: Ownership(
        table="candidate_phase_status",
        key=("submission_protocol", "phase"),
        remote=("status", "score"),
        touch=True,
    ),
}

REGISTRATION_OWNERSHIP = Ownership(
    table="event_registrations",
    key=("event_id", "cpf_hash"),
    merged=("nome", "email", "telefone"),
    sticky=("confirmed",),
    insert_defaults={"nome": ""},
)


class Change(Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class ApplyResult:
    """Outcome of one entity kind's batch."""

    count: int = 0
    errors: List[str] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    def record(self, change: Change) -> None:
        if change is Change.INSERTED:
            self.inserted += 1
        elif change is Change.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1
            return
        self.count += 1


_EMPTY = (None, "")


class Reconciler:
    """Apply canonical records to the local store."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Row level
    # ------------------------------------------------------------------
    def _upsert(self, own: Ownership, values: Mapping[str, Any]) -> Tuple[Change, int]:
        values = dict(values)
        for col in own.optional_key:
            if values.get(col) is None:
                values[col] = ""
        key_values = [values.get(col) for col in own.key]
        if any(values.get(col) in _EMPTY for col in own.key if col not in own.optional_key):
            raise RecordError(f"missing natural key ({', '.join(own.key)})")
        where = " AND ".join(f"{col} = ?" for col in own.key)
        c = self.db.conn.cursor()
        c.execute(f"SELECT * FROM {own.table} WHERE {where}", key_values)
        row = c.fetchone()

        if row is None:
            insert = {col: values.get(col) for col in own.columns if values.get(col) is not None}
            for col, default in own.insert_defaults.items():
                if insert.get(col) in _EMPTY:
                    insert[col] = default
            for col, source in own.insert_fallbacks.items():
                if insert.get(col) in _EMPTY:
                    insert[col] = values.get(source)
            cols = list(insert)
            c.execute(
                f"INSERT INTO {own.table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                [insert[col] for col in cols],
            )
            return Change.INSERTED, c.lastrowid

        updates: Dict[str, Any] = {}
        for col in own.remote:
            if values.get(col) != row[col]:
                updates[col] = values.get(col)
        for col in own.merged:
            value = values.get(col)
            if value not in _EMPTY and value != row[col]:
                updates[col] = value
        for col in own.sticky:
            if values.get(col) and not row[col]:
                updates[col] = values[col]
        if not updates:
            return Change.UNCHANGED, row["id"]

        assignments = ", ".join(f"{col} = ?" for col in updates)
        if own.touch:
            assignments += ", updated_at = datetime('now')"
        c.execute(f"UPDATE {own.table} SET {assignments} WHERE id = ?", [*updates.values(), row["id"]])
        return Change.UPDATED, row["id"]

    def _values(self, own: Ownership, record: CanonicalRecord) -> Dict[str, Any]:
        return {col: getattr(record, col) for col in own.columns}

    def _apply_event(self, record: EventRecord) -> Change:
        own = FIELD_OWNERSHIP[EntityKind.EVENTS]
        change, event_id = self._upsert(own, self._values(own, record))
        registrations_changed = False
        for registration in record.registrations:
            values = {col: getattr(registration, col) for col in REGISTRATION_OWNERSHIP.columns if col != "event_id"}
            values["event_id"] = event_id
            reg_change, _ = self._upsert(REGISTRATION_OWNERSHIP, values)
            registrations_changed = registrations_changed or reg_change is not Change.UNCHANGED
        if change is Change.UNCHANGED and registrations_changed:
            return Change.UPDATED
        return change

    def apply_record(self, kind: EntityKind, record: CanonicalRecord) -> Change:
        """Upsert one record and commit it; rolls back and re-raises on failure."""
        try:
            if kind is EntityKind.EVENTS:
                change = self._apply_event(record)
            else:
                own = FIELD_OWNERSHIP[kind]
                change, _ = self._upsert(own, self._values(own, record))
        except Exception:
            self.db.conn.rollback()
            raise
        self.db.conn.commit()
        return change

    # ------------------------------------------------------------------
    # Batch level
    # ------------------------------------------------------------------
    def apply(
        self,
        kind: Union[EntityKind, str],
        records: Iterable[Union[RecordResult, CanonicalRecord]],
    ) -> ApplyResult:
        """
        Apply a batch of canonical records of one kind.

        Parameters
        ----------
        kind : EntityKind or str
            Entity kind of every record in the batch.
        records : iterable
            ``RecordResult`` values from the normalizer, or bare
            canonical records. Skipped results are reported as errors.

        Returns
        -------
        ApplyResult
            Number of rows inserted or changed plus one message per
            skipped or failed record.
        """
        kind = EntityKind(kind)
        result = ApplyResult()
        seen_faq: Set[Tuple[str, str]] = set()
        for item in records:
            if isinstance(item, RecordResult):
                if not item.ok:
                    result.errors.append(str(item.skip))
                    continue
                record = item.record
            else:
                record = item
            try:
                result.record(self.apply_record(kind, record))
            except (RecordError, sqlite3.Error, ValueError, TypeError, KeyError, AttributeError) as exc:
                reason = SkipReason(kind.value, getattr(record, "key", ""), str(exc))
                logger.warning("Skipped %s", reason)
                result.errors.append(str(reason))
                continue
            if kind is EntityKind.FAQ:
                seen_faq.add((record.section, record.question))
        if kind is EntityKind.FAQ and seen_faq:
            self._deactivate_stale_faq(seen_faq)
        logger.info(
            "%s: %d inserted, %d updated, %d unchanged, %d errors",
            kind.value, result.inserted, result.updated, result.unchanged, len(result.errors),
        )
        return result

    def _deactivate_stale_faq(self, keep: Set[Tuple[str, str]]) -> None:
        rows = self.db.conn.execute("SELECT id, section, question FROM faq WHERE active = 1").fetchall()
        stale = [(row["id"],) for row in rows if (row["section"], row["question"]) not in keep]
        if stale:
            self.db.conn.executemany("UPDATE faq SET active = 0 WHERE id = ?", stale)
            self.db.conn.commit()

    # ------------------------------------------------------------------
    # Process-wide scalars
    # ------------------------------------------------------------------
    def apply_settings(self, snapshot: Mapping[str, Any]) -> int:
        """Copy the edital year and registration window into settings.

        Returns the number of settings whose value changed.
        """
        updates: Dict[str, str] = {}
        if snapshot.get("activeEditalYear"):
            updates["app.year"] = str(snapshot["activeEditalYear"])
        window = snapshot.get("registrationWindow")
        if isinstance(window, Mapping):
            updates["registration.open"] = "1" if window.get("isOpen") else "0"
            if window.get("startISO"):
                updates["registration.start_date"] = str(window["startISO"]).split("T")[0]
            if window.get("endISO"):
                updates["registration.end_date"] = str(window["endISO"]).split("T")[0]
        current = self.db.get_settings()
        changed = {k: v for k, v in updates.items() if current.get(k) != v}
        if changed:
            self.db.update_settings(changed)
        return len(changed)
