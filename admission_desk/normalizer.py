"""
Projection of remote payloads into canonical records.

The remote server has changed its JSON shapes several times and a
snapshot can mix them. For every entity kind this module declares the
closed set of known shapes, detects which one a payload uses from its
structure, and runs the normalizer written for that shape. All shapes
of a kind produce the same canonical record type, whose field names are
the local column names.

Normalization never raises for a bad record: every input yields
``RecordResult`` values that either carry a canonical record or a
``SkipReason`` explaining why the record is unusable.
"""

from __future__ import annotations

import datetime
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from admission_desk.database import (
    EVAL_CONCLUDED,
    EVAL_ELIMINATED,
    INTERVIEW_COLUMNS,
    LANGUAGE_COLUMNS,
    PROJECT_COLUMNS,
    STATUS_APPROVED,
    STATUS_RECEIVED,
    STATUS_REJECTED,
)
from admission_desk.scoring import evaluation_averages

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Entity collections of a snapshot; values are the snapshot keys."""

    SUBMISSIONS = "submissions"
    EVALUATIONS = "evaluations"
    APPEALS = "appeals"
    EVENTS = "events"
    CALENDAR = "calendar"
    FAQ = "faq"
    PUBLIC_FILES = "publicFiles"
    EVALUATORS = "evaluators"
    PHASE_STATUS = "phaseStatus"


# ----------------------------------------------------------------------
# Canonical records
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SubmissionRecord:
    protocol: str
    hash: str
    nome: str
    cpf_hash: str
    cpf_last4: str
    status: str = STATUS_RECEIVED
    email: str = ""
    linha_pesquisa: str = ""
    titulo_pt: str = ""
    titulo_en: str = ""
    nome_social: str = ""
    data_nascimento: str = ""
    rg: str = ""
    orgao_emissor: str = ""
    endereco: str = ""
    cidade: str = ""
    estado: str = ""
    cep: str = ""
    telefone: str = ""
    curso_graduacao: str = ""
    instituicao: str = ""
    ano_conclusao: str = ""
    vaga_institucional: Optional[int] = None
    cooperacao_sdr: Optional[int] = None
    cota_negro: Optional[int] = None
    cota_indigena: Optional[int] = None
    cota_quilombola: Optional[int] = None
    cota_cigano: Optional[int] = None
    cota_trans: Optional[int] = None
    cota_pcd: Optional[int] = None
    palavras_chave: str = ""
    resumo: str = ""
    justificativa: str = ""
    introducao: str = ""
    problema: str = ""
    objetivos: str = ""
    revisao_literatura: str = ""
    metodologia: str = ""
    cronograma: str = ""
    referencias: str = ""
    created_at: Optional[str] = None
    data: Optional[str] = None

    @property
    def key(self) -> str:
        return self.protocol


@dataclass(frozen=True)
class EvaluationRecord:
    submission_protocol: str
    evaluator_num: int
    phase: str
    evaluator_line: str = ""
    proj_introducao: float = 0.0
    proj_problema: float = 0.0
    proj_justificativa: float = 0.0
    proj_objetivos: float = 0.0
    proj_revisao: float = 0.0
    proj_metodos: float = 0.0
    proj_cronograma: float = 0.0
    proj_referencias: float = 0.0
    proj_media: Optional[float] = 0.0
    proj_parecer: str = ""
    int_apresentacao: float = 0.0
    int_historico: float = 0.0
    int_defesa: float = 0.0
    int_justificativa: float = 0.0
    int_media: Optional[float] = 0.0
    int_parecer: str = ""
    lang_clareza: float = 0.0
    lang_dominio: float = 0.0
    lang_analise: float = 0.0
    lang_media: Optional[float] = 0.0
    lang_parecer: str = ""
    status: str = EVAL_CONCLUDED
    created_at: Optional[str] = None
    data: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.submission_protocol}/{self.evaluator_num}/{self.phase}"

    @property
    def project_average(self) -> Optional[float]:
        return self.proj_media

    @property
    def interview_average(self) -> Optional[float]:
        return self.int_media

    @property
    def language_average(self) -> Optional[float]:
        return self.lang_media


@dataclass(frozen=True)
class AppealRecord:
    protocol: str
    submission_protocol: str
    etapa: str
    argumentacao: str = ""
    nome: str = ""
    cpf_hash: str = ""
    email: str = ""
    status: str = "Recebido"
    decisao_contestacao: str = ""
    motivo_decisao: str = ""
    created_at: Optional[str] = None
    data: Optional[str] = None

    @property
    def key(self) -> str:
        return self.protocol


@dataclass(frozen=True)
class RegistrationRecord:
    nome: str
    cpf_hash: str
    email: str = ""
    telefone: str = ""
    confirmed: int = 0


@dataclass(frozen=True)
class EventRecord:
    title: str
    date: str
    description: str = ""
    time: str = ""
    location: str = ""
    max_participants: Optional[int] = None
    active: int = 0
    image_path: str = ""
    data: Optional[str] = None
    registrations: Tuple[RegistrationRecord, ...] = field(default=(), compare=False)

    @property
    def key(self) -> str:
        return f"{self.title} ({self.date})" if self.date else self.title


@dataclass(frozen=True)
class CalendarPhaseRecord:
    year: int
    phase: str
    label: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    active: int = 1

    @property
    def key(self) -> str:
        return f"{self.year}/{self.phase}"


@dataclass(frozen=True)
class FaqRecord:
    section: str
    question: str
    answer: str
    sort_order: int = 0
    active: int = 1

    @property
    def key(self) -> str:
        return f"{self.section}/{self.question}"


@dataclass(frozen=True)
class PublicFileRecord:
    original_name: str
    filename: str = ""
    category: str = ""
    description: str = ""

    @property
    def key(self) -> str:
        return self.original_name


@dataclass(frozen=True)
class EvaluatorAccountRecord:
    """Instruction to create or update an evaluator account."""

    username: str
    display_name: str = ""
    email: str = ""
    line: str = ""
    evaluator_num: Optional[int] = None
    role: str = "evaluator"
    # Carried for the external credential store, never persisted here
    password: str = field(default="", repr=False, compare=False)

    @property
    def key(self) -> str:
        return self.username


@dataclass(frozen=True)
class PhaseStatusRecord:
    submission_protocol: str
    phase: str
    status: str = ""
    score: Optional[float] = None

    @property
    def key(self) -> str:
        return f"{self.submission_protocol}/{self.phase}"


CanonicalRecord = Union[
    SubmissionRecord,
    EvaluationRecord,
    AppealRecord,
    EventRecord,
    CalendarPhaseRecord,
    FaqRecord,
    PublicFileRecord,
    EvaluatorAccountRecord,
    PhaseStatusRecord,
]


@dataclass(frozen=True)
class SkipReason:
    kind: str
    key: str
    message: str

    def __str__(self) -> str:
        label = f"{self.kind} {self.key}" if self.key else self.kind
        return f"{label}: {self.message}"


@dataclass(frozen=True)
class RecordResult:
    """Either a canonical record or the reason the input was skipped."""

    record: Optional[CanonicalRecord] = None
    skip: Optional[SkipReason] = None

    @property
    def ok(self) -> bool:
        return self.record is not None

    @classmethod
    def accept(cls, record: CanonicalRecord) -> "RecordResult":
        return cls(record=record)

    @classmethod
    def reject(cls, kind: EntityKind, key: str, message: str) -> "RecordResult":
        return cls(skip=SkipReason(kind.value, key, message))


class RecordError(ValueError):
    """Raised inside a normalizer for an unusable record."""


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------
_MISSING = (None, "")


def _first(*values: Any, default: Any = "") -> Any:
    """First value that is neither ``None`` nor an empty string."""
    for value in values:
        if value not in _MISSING:
            return value
    return default


def _pick(key: str, *sources: Mapping[str, Any], default: Any = "") -> Any:
    return _first(*(src.get(key) for src in sources), default=default)


def _text(value: Any) -> str:
    if value in _MISSING:
        return ""
    return str(value)


def _flag(value: Any) -> int:
    if isinstance(value, str):
        return 1 if value.strip().lower() in {"1", "true", "sim", "yes", "on", "s"} else 0
    return 1 if value else 0


def _optional_flag(value: Any) -> Optional[int]:
    return None if value in _MISSING else _flag(value)


def _number(value: Any, name: str) -> float:
    """Parse a sub-score; absent values are ``0``."""
    if value in _MISSING:
        return 0.0
    if isinstance(value, bool):
        raise RecordError(f"non-numeric value for '{name}': {value!r}")
    try:
        return float(str(value).replace(",", ".")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise RecordError(f"non-numeric value for '{name}': {value!r}") from None


def _integer(value: Any, name: str) -> int:
    if value in _MISSING:
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise RecordError(f"non-integer value for '{name}': {value!r}") from None


def _optional_integer(value: Any, name: str) -> Optional[int]:
    return None if value in _MISSING else _integer(value, name)


def _date_only(value: Any, name: str) -> Optional[str]:
    """Strip any time-of-day part and validate the remaining date."""
    if value in _MISSING:
        return None
    text = str(value).strip()
    date_part = re.split(r"[T ]", text, maxsplit=1)[0]
    try:
        datetime.date.fromisoformat(date_part)
    except ValueError:
        raise RecordError(f"malformed date for '{name}': {value!r}") from None
    return date_part


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _digits(value: Any) -> str:
    return re.sub(r"\D", "", _text(value))


def _raw_json(raw: Any) -> str:
    return json.dumps(raw, sort_keys=True, ensure_ascii=False, default=str)


# ----------------------------------------------------------------------
# Submissions
# ----------------------------------------------------------------------
class SubmissionShape(Enum):
    NESTED = "nested"  # personal data under ``identified``, project under ``project``/``blind``
    FLAT = "flat"      # everything as top-level columns


QUOTA_NAMES = ("negro", "indigena", "quilombola", "cigano", "trans", "pcd")

_STATUS_ALIASES = {
    "recebida": STATUS_RECEIVED,
    "recebido": STATUS_RECEIVED,
    "received": STATUS_RECEIVED,
    "pendente": STATUS_RECEIVED,
    "deferida": STATUS_APPROVED,
    "deferido": STATUS_APPROVED,
    "aprovada": STATUS_APPROVED,
    "aprovado": STATUS_APPROVED,
    "approved": STATUS_APPROVED,
    "indeferida": STATUS_REJECTED,
    "indeferido": STATUS_REJECTED,
    "reprovada": STATUS_REJECTED,
    "rejeitada": STATUS_REJECTED,
    "rejected": STATUS_REJECTED,
}


def detect_submission_shape(raw: Mapping[str, Any]) -> SubmissionShape:
    if any(isinstance(raw.get(k), Mapping) for k in ("identified", "project", "blind")):
        return SubmissionShape.NESTED
    return SubmissionShape.FLAT


def _submission_status(value: Any) -> str:
    if value in _MISSING:
        return STATUS_RECEIVED
    status = _STATUS_ALIASES.get(str(value).strip().lower())
    if status is None:
        raise RecordError(f"unknown status {value!r}")
    return status


def _quota_flags(personal: Mapping[str, Any], raw: Mapping[str, Any]) -> Dict[str, Optional[int]]:
    """Quota flags; ``None`` where the payload says nothing about a quota.

    A ``cotas`` list is a complete declaration, so every quota it omits
    is an explicit ``0``.
    """
    declared = _first(personal.get("cotas"), raw.get("cotas"), default=None)
    if isinstance(declared, str):
        declared = [declared]
    names = None
    if declared is not None:
        names = {str(item).strip().lower().replace("cota_", "") for item in declared}
    flags: Dict[str, Optional[int]] = {}
    for name in QUOTA_NAMES:
        value = _optional_flag(_pick(f"cota_{name}", personal, raw, default=None))
        if names is not None:
            value = 1 if name in names or value else 0
        flags[f"cota_{name}"] = value
    return flags


def _project_submission(
    raw: Mapping[str, Any],
    personal: Mapping[str, Any],
    project: Mapping[str, Any],
) -> SubmissionRecord:
    protocol = _text(_first(raw.get("protocol"), raw.get("protocolo")))
    if not protocol:
        raise RecordError("missing protocol")

    cpf = _digits(_pick("cpf", personal, raw))
    cpf_hash = _first(raw.get("cpfHash"), raw.get("cpf_hash"), default=_digest(cpf) if cpf else "")
    cpf_last4 = _first(raw.get("cpfLast4"), raw.get("cpf_last4"), default=cpf[-4:] if len(cpf) >= 4 else "")

    city_state = _text(personal.get("cidade_estado"))
    if city_state:
        city, _, state = city_state.partition("/")
        city, state = city.strip(), state.strip()
    else:
        city = _text(_pick("cidade", personal, raw))
        state = _text(_pick("estado", personal, raw))

    keywords = _text(project.get("palavras_pt"))
    if project.get("palavras_en"):
        keywords = f"{keywords} | {project['palavras_en']}"
    if not keywords:
        keywords = _text(raw.get("palavras_chave"))

    return SubmissionRecord(
        protocol=protocol,
        hash=_text(_first(raw.get("hash"), default=_digest(protocol))),
        nome=_text(_pick("nome", personal, raw)),
        cpf_hash=_text(cpf_hash),
        cpf_last4=_text(cpf_last4),
        status=_submission_status(raw.get("status")),
        email=_text(_pick("email", personal, raw)),
        linha_pesquisa=_text(_first(
            project.get("area"), personal.get("linha_pesquisa"), raw.get("linha_pesquisa"), raw.get("researchLine"),
        )),
        titulo_pt=_text(_pick("titulo_pt", project, raw)),
        titulo_en=_text(_pick("titulo_en", project, raw)),
        nome_social=_text(_pick("nome_social", personal, raw)),
        data_nascimento=_text(_pick("data_nascimento", personal, raw)),
        rg=_text(_pick("rg", personal, raw)),
        orgao_emissor=_text(_first(
            personal.get("orgao_expedidor"), personal.get("orgao_emissor"), raw.get("orgao_emissor"),
        )),
        endereco=_text(_pick("endereco", personal, raw)),
        cidade=city,
        estado=state,
        cep=_text(_pick("cep", personal, raw)),
        telefone=_text(_first(
            personal.get("celular"), personal.get("telefone_residencial"), personal.get("telefone"),
            raw.get("telefone"),
        )),
        curso_graduacao=_text(_pick("curso_graduacao", personal, raw)),
        instituicao=_text(_pick("instituicao", personal, raw)),
        ano_conclusao=_text(_pick("ano_conclusao", personal, raw)),
        vaga_institucional=_optional_flag(_pick("vaga_institucional", personal, raw, default=None)),
        cooperacao_sdr=_optional_flag(_pick("cooperacao_sdr", personal, raw, default=None)),
        palavras_chave=keywords,
        resumo=_text(_pick("resumo", project, raw)),
        justificativa=_text(_first(
            project.get("justificativa_relevancia"), project.get("justificativa_enquadramento"),
            project.get("justificativa"), raw.get("justificativa"),
        )),
        introducao=_text(_pick("introducao", project, raw)),
        problema=_text(_pick("problema", project, raw)),
        objetivos=_text(_pick("objetivos", project, raw)),
        revisao_literatura=_text(_pick("revisao_literatura", project, raw)),
        metodologia=_text(_pick("metodologia", project, raw)),
        cronograma=_text(_pick("cronograma", project, raw)),
        referencias=_text(_pick("referencias", project, raw)),
        created_at=_first(raw.get("createdAt"), raw.get("created_at"), raw.get("timestamp"), default=None),
        data=_raw_json(raw),
        **_quota_flags(personal, raw),
    )


def _normalize_nested_submission(raw: Mapping[str, Any]) -> List[RecordResult]:
    personal = raw.get("identified") if isinstance(raw.get("identified"), Mapping) else {}
    project = next((raw[k] for k in ("project", "blind") if isinstance(raw.get(k), Mapping)), {})
    return [RecordResult.accept(_project_submission(raw, personal, project))]


def _normalize_flat_submission(raw: Mapping[str, Any]) -> List[RecordResult]:
    return [RecordResult.accept(_project_submission(raw, {}, {}))]


# ----------------------------------------------------------------------
# Evaluations
# ----------------------------------------------------------------------
class EvaluationShape(Enum):
    DYNAMIC = "dynamic"  # keys like ``proj_avaliador2_metodos`` inside score maps
    FLAT = "flat"        # one evaluator's sub-scores as top-level columns


SCORE_KEY_PATTERN = re.compile(r"^(?P<category>proj|int|lang)_avaliador(?P<evaluator>\d+)_(?P<field>.+)$")

SCORE_FIELDS: Dict[str, Dict[str, str]] = {
    "proj": {
        "intro": "proj_introducao",
        "introducao": "proj_introducao",
        "problema": "proj_problema",
        "justificativa": "proj_justificativa",
        "objetivos": "proj_objetivos",
        "revisao": "proj_revisao",
        "metodos": "proj_metodos",
        "metodologia": "proj_metodos",
        "cronograma": "proj_cronograma",
        "referencias": "proj_referencias",
        "parecer": "proj_parecer",
    },
    "int": {
        "apresentacao": "int_apresentacao",
        "historico": "int_historico",
        "defesa": "int_defesa",
        "justificativa": "int_justificativa",
        "parecer": "int_parecer",
    },
    "lang": {
        "clareza": "lang_clareza",
        "dominio": "lang_dominio",
        "analise": "lang_analise",
        "parecer": "lang_parecer",
    },
}

_SCORE_MAPS = ("projectScores", "interviewScores", "languageScores")
_TEXT_COLUMNS = {"proj_parecer", "int_parecer", "lang_parecer"}
_SCORE_COLUMNS = PROJECT_COLUMNS + INTERVIEW_COLUMNS + LANGUAGE_COLUMNS


@dataclass(frozen=True)
class ScoreKey:
    evaluator: int
    category: str
    column: str


def parse_score_key(key: str) -> Optional[ScoreKey]:
    """Split a composite score key into evaluator, category and column.

    Returns ``None`` for keys that do not follow the pattern or name an
    unknown field.
    """
    match = SCORE_KEY_PATTERN.match(key)
    if not match:
        return None
    category = match.group("category")
    name = match.group("field")
    prefix = f"{category}_"
    if name.startswith(prefix):
        name = name[len(prefix):]
    column = SCORE_FIELDS[category].get(name)
    if column is None:
        return None
    return ScoreKey(int(match.group("evaluator")), category, column)


def detect_evaluation_shape(raw: Mapping[str, Any]) -> EvaluationShape:
    if any(isinstance(raw.get(k), Mapping) for k in _SCORE_MAPS):
        return EvaluationShape.DYNAMIC
    return EvaluationShape.FLAT


def _evaluation_protocol(raw: Mapping[str, Any]) -> str:
    protocol = _text(_first(raw.get("protocol"), raw.get("submissionProtocol"), raw.get("submission_protocol")))
    if not protocol:
        raise RecordError("missing submission protocol")
    return protocol


def _evaluation_status(raw: Mapping[str, Any], default: str) -> str:
    if _flag(raw.get("eliminado")):
        return EVAL_ELIMINATED
    return _text(raw.get("status")) or default


def _build_evaluation(values: Dict[str, Any], **fields: Any) -> EvaluationRecord:
    scores = {col: values.get(col, 0.0) for col in _SCORE_COLUMNS}
    texts = {col: values.get(col, "") for col in _TEXT_COLUMNS}
    return EvaluationRecord(**scores, **texts, **evaluation_averages(scores), **fields)


def _normalize_dynamic_evaluation(raw: Mapping[str, Any]) -> List[RecordResult]:
    protocol = _evaluation_protocol(raw)
    per_evaluator: Dict[int, Dict[str, Any]] = {}
    # Each row keeps only its own evaluator's raw keys
    raw_keys: Dict[int, Dict[str, Any]] = {}
    for map_name in _SCORE_MAPS:
        scores = raw.get(map_name)
        if not isinstance(scores, Mapping):
            continue
        for key, value in scores.items():
            parsed = parse_score_key(key)
            if parsed is None:
                logger.debug("Ignoring score key %s of %s", key, protocol)
                continue
            folded = per_evaluator.setdefault(parsed.evaluator, {})
            if parsed.column in _TEXT_COLUMNS:
                folded[parsed.column] = _text(value)
            else:
                folded[parsed.column] = _number(value, key)
            raw_keys.setdefault(parsed.evaluator, {})[key] = value
    if not per_evaluator:
        raise RecordError("no evaluator scores found")

    status = EVAL_ELIMINATED if _flag(raw.get("eliminado")) else EVAL_CONCLUDED
    created_at = _first(raw.get("updatedAt"), raw.get("createdAt"), default=None)
    return [
        RecordResult.accept(_build_evaluation(
            values,
            submission_protocol=protocol,
            evaluator_num=evaluator,
            phase="completa",
            evaluator_line=_text(_first(raw.get("line"), raw.get("evaluator_line"))),
            status=status,
            created_at=created_at,
            data=_raw_json({"protocol": protocol, "status": status, **raw_keys[evaluator]}),
        ))
        for evaluator, values in sorted(per_evaluator.items())
    ]


def _normalize_flat_evaluation(raw: Mapping[str, Any]) -> List[RecordResult]:
    protocol = _evaluation_protocol(raw)
    values: Dict[str, Any] = {col: _number(raw.get(col), col) for col in _SCORE_COLUMNS}
    values.update({col: _text(raw.get(col)) for col in _TEXT_COLUMNS})
    record = _build_evaluation(
        values,
        submission_protocol=protocol,
        evaluator_num=_integer(_first(raw.get("evaluator_num"), raw.get("evaluatorNum"), raw.get("num")), "num"),
        phase=_text(_first(raw.get("phase"), raw.get("etapa"), raw.get("type"), default="projeto")),
        evaluator_line=_text(_first(raw.get("evaluator_line"), raw.get("line"), raw.get("linha"))),
        status=_evaluation_status(raw, EVAL_CONCLUDED),
        created_at=_first(raw.get("created_at"), raw.get("createdAt"), default=None),
        data=_raw_json(raw),
    )
    return [RecordResult.accept(record)]


# ----------------------------------------------------------------------
# Appeals, events, public files, phase status
# ----------------------------------------------------------------------
def _normalize_appeal(raw: Mapping[str, Any]) -> List[RecordResult]:
    protocol = _text(_first(raw.get("protocol"), raw.get("protocolo")))
    if not protocol:
        raise RecordError("missing protocol")
    cpf = _digits(raw.get("cpf"))
    record = AppealRecord(
        protocol=protocol,
        submission_protocol=_text(_first(raw.get("submissionProtocol"), raw.get("submission_protocol"))),
        etapa=_text(_first(raw.get("etapa"), raw.get("stage"))),
        argumentacao=_text(raw.get("argumentacao")),
        nome=_text(_first(raw.get("nome"), raw.get("candidato_nome"))),
        cpf_hash=_digest(cpf) if cpf else _text(raw.get("cpfHash")),
        email=_text(raw.get("email")),
        status=_text(_first(raw.get("status"), default="Recebido")),
        decisao_contestacao=_text(_first(raw.get("decisao_contestacao"), raw.get("decisaoContestacao"))),
        motivo_decisao=_text(_first(raw.get("motivo_decisao"), raw.get("motivoDecisao"))),
        created_at=_first(raw.get("created_at"), raw.get("createdAt"), default=None),
        data=_raw_json(raw),
    )
    return [RecordResult.accept(record)]


def _normalize_registration(raw: Mapping[str, Any]) -> Optional[RegistrationRecord]:
    cpf = _digits(raw.get("cpf"))
    if not cpf:
        return None
    return RegistrationRecord(
        nome=_text(_first(raw.get("nome"), raw.get("name"))),
        cpf_hash=_digest(cpf),
        email=_text(raw.get("email")),
        telefone=_text(_first(raw.get("telefone"), raw.get("phone"))),
        confirmed=_flag(raw.get("confirmed")),
    )


def _normalize_event(raw: Mapping[str, Any]) -> List[RecordResult]:
    title = _text(_first(raw.get("title"), raw.get("titulo")))
    if not title:
        raise RecordError("missing title")
    registrations = []
    for item in raw.get("registrations") or []:
        if isinstance(item, Mapping):
            registration = _normalize_registration(item)
            if registration is not None:
                registrations.append(registration)
    record = EventRecord(
        title=title,
        date=_text(raw.get("date")),
        description=_text(raw.get("description")),
        time=_text(_first(raw.get("workload"), raw.get("time"))),
        location=_text(_first(raw.get("location"), raw.get("local"))),
        max_participants=_optional_integer(_first(raw.get("maxParticipants"), raw.get("max_participants")), "maxParticipants"),
        active=1 if raw.get("status") == "open" or _flag(raw.get("active")) else 0,
        image_path=_text(_first(raw.get("imageFilename"), raw.get("image_path"))),
        data=_raw_json(raw),
        registrations=tuple(registrations),
    )
    return [RecordResult.accept(record)]


def _normalize_public_file(raw: Mapping[str, Any]) -> List[RecordResult]:
    name = _text(_first(raw.get("title"), raw.get("originalName"), raw.get("name"), raw.get("filename")))
    if not name:
        raise RecordError("missing file name")
    record = PublicFileRecord(
        original_name=name,
        filename=_text(_first(raw.get("filename"), raw.get("storedName"))),
        category=_text(_first(raw.get("category"), raw.get("categoria"))),
        description=_text(_first(raw.get("description"), raw.get("descricao"))),
    )
    return [RecordResult.accept(record)]


def _normalize_phase_status(raw: Mapping[str, Any]) -> List[RecordResult]:
    protocol = _text(_first(raw.get("submissionProtocol"), raw.get("submission_protocol")))
    phase = _text(_first(raw.get("phaseKey"), raw.get("phase")))
    if not protocol or not phase:
        raise RecordError("missing submission protocol or phase")
    score = raw.get("score")
    record = PhaseStatusRecord(
        submission_protocol=protocol,
        phase=phase,
        status=_text(raw.get("status")),
        score=None if score in _MISSING else _number(score, "score"),
    )
    return [RecordResult.accept(record)]


# ----------------------------------------------------------------------
# Evaluator accounts
# ----------------------------------------------------------------------
class EvaluatorShape(Enum):
    LIST = "list"  # array of account objects
    MAP = "map"    # object keyed by username


def _account(raw: Mapping[str, Any], username: Any = None) -> List[RecordResult]:
    name = _text(_first(username, raw.get("username"), raw.get("id")))
    if not name:
        raise RecordError("missing username")
    record = EvaluatorAccountRecord(
        username=name,
        display_name=_text(_first(raw.get("name"), raw.get("display_name"))),
        email=_text(raw.get("email")),
        line=_text(_first(raw.get("line"), raw.get("linha"))),
        evaluator_num=_optional_integer(_first(raw.get("num"), raw.get("evaluatorNum"), raw.get("evaluator_num")), "num"),
        password=_text(_first(raw.get("pass"), raw.get("password"))),
    )
    return [RecordResult.accept(record)]


def _normalize_evaluator_list(payload: List[Any]) -> List[RecordResult]:
    return _each(EntityKind.EVALUATORS, payload, _account)


def _normalize_evaluator_map(payload: Mapping[str, Any]) -> List[RecordResult]:
    results: List[RecordResult] = []
    for username, value in payload.items():
        results.extend(_guarded(
            EntityKind.EVALUATORS, username, lambda: _account(value if isinstance(value, Mapping) else {}, username),
        ))
    return results


# ----------------------------------------------------------------------
# Calendar
# ----------------------------------------------------------------------
class CalendarShape(Enum):
    LIST = "list"  # [{phase, label, start, end}, ...]
    MAP = "map"    # {PHASE_KEY: {label, startISO, endISO}, ...}


_CALENDAR_METADATA = {"year", "global", "updatedAt"}


def _year(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _unwrap_calendar(payload: Any) -> Tuple[Any, Optional[int]]:
    if not isinstance(payload, Mapping):
        return payload, None
    if "phases" in payload:
        return payload["phases"], _year(payload.get("year"))
    return payload, _year(payload.get("year"))


def _calendar_phase(raw: Mapping[str, Any], year: int, phase: Any = None) -> List[RecordResult]:
    name = _text(_first(phase, raw.get("phase"), raw.get("name"), raw.get("key")))
    if not name:
        raise RecordError("missing phase name")
    record = CalendarPhaseRecord(
        year=year,
        phase=name,
        label=_text(_first(raw.get("label"), default=name)),
        start_date=_date_only(_first(raw.get("startISO"), raw.get("start"), default=None), "start"),
        end_date=_date_only(_first(raw.get("endISO"), raw.get("end"), default=None), "end"),
    )
    return [RecordResult.accept(record)]


def _normalize_calendar_list(payload: List[Any], year: int) -> List[RecordResult]:
    return _each(EntityKind.CALENDAR, payload, lambda raw: _calendar_phase(raw, year))


def _normalize_calendar_map(payload: Mapping[str, Any], year: int) -> List[RecordResult]:
    results: List[RecordResult] = []
    for phase, value in payload.items():
        if phase in _CALENDAR_METADATA:
            continue
        if not isinstance(value, Mapping):
            results.append(RecordResult.reject(EntityKind.CALENDAR, phase, "phase entry is not an object"))
            continue
        results.extend(_guarded(EntityKind.CALENDAR, phase, lambda: _calendar_phase(value, year, phase)))
    return results


# ----------------------------------------------------------------------
# FAQ
# ----------------------------------------------------------------------
class FaqShape(Enum):
    TEXT = "text"            # one opaque string, kept verbatim
    SECTIONED = "sectioned"  # {sections: [{title, items: [{question, answer}]}]}
    FLAT = "flat"            # [{section, question, answer}, ...]


DEFAULT_FAQ_SECTION = "general"


def _faq_item(raw: Mapping[str, Any], section: Any, order: int) -> FaqRecord:
    question = _text(_first(raw.get("question"), raw.get("pergunta")))
    answer = _text(_first(raw.get("answer"), raw.get("resposta")))
    if not question and not answer:
        raise RecordError("empty question and answer")
    return FaqRecord(
        section=_text(_first(section, default=DEFAULT_FAQ_SECTION)),
        question=question,
        answer=answer,
        sort_order=order,
    )


def _normalize_faq_text(payload: str) -> List[RecordResult]:
    return [RecordResult.accept(FaqRecord(section=DEFAULT_FAQ_SECTION, question="FAQ", answer=payload))]


def _normalize_faq_sectioned(payload: Mapping[str, Any]) -> List[RecordResult]:
    results: List[RecordResult] = []
    order = 0
    for section in payload.get("sections") or []:
        if not isinstance(section, Mapping):
            results.append(RecordResult.reject(EntityKind.FAQ, "", "section is not an object"))
            continue
        name = _first(section.get("title"), section.get("id"), default=DEFAULT_FAQ_SECTION)
        for item in section.get("items") or []:
            results.extend(_guarded(EntityKind.FAQ, str(name), lambda: [RecordResult.accept(_faq_item(item, name, order))]))
            order += 1
    return results


def _normalize_faq_flat(payload: List[Any]) -> List[RecordResult]:
    results: List[RecordResult] = []
    for order, item in enumerate(payload):
        results.extend(_guarded(
            EntityKind.FAQ,
            f"#{order}",
            lambda: [RecordResult.accept(_faq_item(item, _first(item.get("section"), item.get("secao")), order))],
        ))
    return results


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------
RecordNormalizer = Callable[[Mapping[str, Any]], List[RecordResult]]

_SHAPE_DETECTORS: Dict[EntityKind, Callable[[Mapping[str, Any]], Enum]] = {
    EntityKind.SUBMISSIONS: detect_submission_shape,
    EntityKind.EVALUATIONS: detect_evaluation_shape,
}

_VARIANT_NORMALIZERS: Dict[Enum, RecordNormalizer] = {
    SubmissionShape.NESTED: _normalize_nested_submission,
    SubmissionShape.FLAT: _normalize_flat_submission,
    EvaluationShape.DYNAMIC: _normalize_dynamic_evaluation,
    EvaluationShape.FLAT: _normalize_flat_evaluation,
}

_RECORD_NORMALIZERS: Dict[EntityKind, RecordNormalizer] = {
    EntityKind.APPEALS: _normalize_appeal,
    EntityKind.EVENTS: _normalize_event,
    EntityKind.PUBLIC_FILES: _normalize_public_file,
    EntityKind.PHASE_STATUS: _normalize_phase_status,
    EntityKind.EVALUATORS: _account,
}


def _record_key(raw: Any) -> str:
    if not isinstance(raw, Mapping):
        return ""
    for key in ("protocol", "protocolo", "submissionProtocol", "title", "username", "phase", "name"):
        if raw.get(key) not in _MISSING:
            return str(raw[key])
    return ""


def _guarded(kind: EntityKind, key: str, fn: Callable[[], List[RecordResult]]) -> List[RecordResult]:
    try:
        return fn()
    except (RecordError, ValueError, TypeError, KeyError, AttributeError) as exc:
        return [RecordResult.reject(kind, key, str(exc) or exc.__class__.__name__)]


def _each(kind: EntityKind, items: Iterable[Any], fn: RecordNormalizer) -> List[RecordResult]:
    results: List[RecordResult] = []
    for raw in items:
        if not isinstance(raw, Mapping):
            results.append(RecordResult.reject(kind, "", f"expected an object, got {type(raw).__name__}"))
            continue
        results.extend(_guarded(kind, _record_key(raw), lambda: fn(raw)))
    return results


def _record_normalizer(kind: EntityKind) -> RecordNormalizer:
    detector = _SHAPE_DETECTORS.get(kind)
    if detector is not None:
        return lambda raw: _VARIANT_NORMALIZERS[detector(raw)](raw)
    try:
        return _RECORD_NORMALIZERS[kind]
    except KeyError:
        raise ValueError(f"{kind.value} is normalized as a whole collection") from None


def detect_shape(kind: Union[EntityKind, str], payload: Any) -> Enum:
    """Return the shape variant a payload of ``kind`` uses."""
    kind = EntityKind(kind)
    if kind in _SHAPE_DETECTORS:
        return _SHAPE_DETECTORS[kind](payload)
    if kind is EntityKind.FAQ:
        if isinstance(payload, str):
            return FaqShape.TEXT
        if isinstance(payload, Mapping):
            return FaqShape.SECTIONED
        return FaqShape.FLAT
    if kind is EntityKind.CALENDAR:
        phases, _ = _unwrap_calendar(payload)
        return CalendarShape.LIST if isinstance(phases, list) else CalendarShape.MAP
    if kind is EntityKind.EVALUATORS:
        return EvaluatorShape.MAP if isinstance(payload, Mapping) else EvaluatorShape.LIST
    raise ValueError(f"{kind.value} has a single known shape")


def normalize_record(kind: Union[EntityKind, str], raw: Any) -> List[RecordResult]:
    """Normalize one raw record; dynamic evaluations may yield several records."""
    kind = EntityKind(kind)
    return _each(kind, [raw], _record_normalizer(kind))


def normalize(kind: Union[EntityKind, str], raw: Any) -> Optional[CanonicalRecord]:
    """Project one raw record; ``None`` means the record is unusable."""
    for result in normalize_record(kind, raw):
        if result.ok:
            return result.record
    return None


def normalize_collection(
    kind: Union[EntityKind, str],
    payload: Any,
    year: Optional[int] = None,
) -> List[RecordResult]:
    """
    Normalize the whole collection a snapshot holds for ``kind``.

    Parameters
    ----------
    kind : EntityKind or str
        Entity collection (snapshot key).
    payload : Any
        The collection as found in the snapshot: a list of records, or
        for calendar, FAQ and evaluators any of their known shapes.
    year : Optional[int]
        Edital year applied to calendar phases. Falls back to the year
        embedded in the calendar payload, then to the current year.

    Returns
    -------
    list of RecordResult
        One result per canonical record or skipped input, in input order.
    """
    kind = EntityKind(kind)
    if payload is None:
        return []
    if kind is EntityKind.FAQ:
        shape = detect_shape(kind, payload)
        if shape is FaqShape.TEXT:
            return _normalize_faq_text(payload)
        if shape is FaqShape.SECTIONED:
            return _normalize_faq_sectioned(payload)
        return _normalize_faq_flat(payload if isinstance(payload, list) else [])
    if kind is EntityKind.CALENDAR:
        phases, embedded_year = _unwrap_calendar(payload)
        resolved_year = _year(year) or embedded_year or datetime.date.today().year
        if isinstance(phases, list):
            return _normalize_calendar_list(phases, resolved_year)
        if isinstance(phases, Mapping):
            return _normalize_calendar_map(phases, resolved_year)
        return [RecordResult.reject(kind, "", "calendar payload is neither a list nor an object")]
    if kind is EntityKind.EVALUATORS:
        if detect_shape(kind, payload) is EvaluatorShape.MAP:
            return _normalize_evaluator_map(payload)
        return _normalize_evaluator_list(payload)
    if not isinstance(payload, list):
        return [RecordResult.reject(kind, "", f"expected a list, got {type(payload).__name__}")]
    return _each(kind, payload, _record_normalizer(kind))
