"""
Utility functions for generating synthetic remote snapshots.

This module contains helpers to construct randomised admissions data
for demonstration and testing purposes. The generated payloads use the
same JSON shapes the remote server sends, so they can be fed to
``SyncService.apply_snapshot`` without a network connection.
"""

from __future__ import annotations

import datetime
import random
from typing import Any, Dict, List, Optional

import pandas as pd

from admission_desk.normalizer import QUOTA_NAMES

PROJECT_FIELDS = ["introducao", "problema", "justificativa", "objetivos", "revisao", "metodos", "cronograma", "referencias"]
INTERVIEW_FIELDS = ["apresentacao", "historico", "defesa", "justificativa"]
LANGUAGE_FIELDS = ["clareza", "dominio", "analise"]


def _random_cpf(rng: random.Random) -> str:
    digits = "".join(str(rng.randint(0, 9)) for _ in range(11))
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def generate_submissions(
    num_candidates: int,
    lines: List[str],
    id_start: int = 1,
    quota_rate: float = 0.2,
    institutional_rate: float = 0.1,
    year: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> pd.DataFrame:
    """
    Generate a random table of submissions.

    Parameters
    ----------
    num_candidates : int
        Number of submissions to generate.
    lines : list[str]
        Research lines; candidates are spread uniformly over them.
    id_start : int, optional
        First protocol sequence number.
    quota_rate : float, optional
        Probability that a candidate declares one quota category.
    institutional_rate : float, optional
        Probability that a non-quota candidate claims an institutional seat.
    year : int, optional
        Edital year used in protocols; defaults to the current year.
    rng : random.Random, optional
        Random source, for reproducible data.

    Returns
    -------
    pandas.DataFrame
        Columns ``protocol``, ``nome``, ``cpf``, ``email``, ``linha_pesquisa``,
        ``cotas`` and ``vaga_institucional``.
    """
    rng = rng or random.Random()
    year = year or datetime.date.today().year
    rows = []
    for idx in range(num_candidates):
        seq = id_start + idx
        quotas = [rng.choice(QUOTA_NAMES)] if rng.random() < quota_rate else []
        rows.append({
            "protocol": f"PPG-{year}-{seq:04d}",
            "nome": f"Candidato {seq}",
            "cpf": _random_cpf(rng),
            "email": f"candidato{seq}@example.org",
            "linha_pesquisa": lines[idx % len(lines)],
            "cotas": quotas,
            "vaga_institucional": not quotas and rng.random() < institutional_rate,
        })
    return pd.DataFrame(rows)


def _scores(rng: random.Random, low: float, high: float) -> float:
    return round(rng.uniform(low, high), 1)


def generate_evaluation(protocol: str, evaluators: int, rng: random.Random, low: float = 5.0, high: float = 10.0) -> Dict[str, Any]:
    """Build one evaluation payload in the per-evaluator composite-key shape."""
    project: Dict[str, Any] = {}
    interview: Dict[str, Any] = {}
    language: Dict[str, Any] = {}
    for num in range(1, evaluators + 1):
        prefix = f"avaliador{num}"
        for name in PROJECT_FIELDS:
            project[f"proj_{prefix}_{name}"] = _scores(rng, low, high)
        for name in INTERVIEW_FIELDS:
            interview[f"int_{prefix}_{name}"] = _scores(rng, low, high)
        for name in LANGUAGE_FIELDS:
            language[f"lang_{prefix}_{name}"] = _scores(rng, low, high)
    return {
        "protocol": protocol,
        "projectScores": project,
        "interviewScores": interview,
        "languageScores": language,
    }


def generate_snapshot(
    counts: Dict[str, int],
    evaluators: int = 2,
    year: Optional[int] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Generate a full remote snapshot.

    Parameters
    ----------
    counts : dict[str, int]
        Number of candidates per research line.
    evaluators : int, optional
        Evaluators scoring every candidate.
    year : int, optional
        Active edital year.
    seed : int, optional
        Seed for reproducible snapshots.

    Returns
    -------
    dict
        Snapshot with ``timestamp``, ``activeEditalYear``,
        ``submissions`` (nested shape), ``evaluations`` and ``calendar``.
    """
    rng = random.Random(seed)
    year = year or datetime.date.today().year
    frames = []
    next_id = 1
    for line, num in counts.items():
        frames.append(generate_submissions(num, [line], id_start=next_id, year=year, rng=rng))
        next_id += num
    df = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()

    submissions = []
    evaluations = []
    for row in df.to_dict("records"):
        submissions.append({
            "protocol": row["protocol"],
            "status": "Recebida",
            "identified": {
                "nome": row["nome"],
                "cpf": row["cpf"],
                "email": row["email"],
                "cotas": row["cotas"],
                "vaga_institucional": bool(row["vaga_institucional"]),
            },
            "project": {"area": row["linha_pesquisa"], "titulo_pt": f"Projeto {row['protocol']}"},
        })
        evaluations.append(generate_evaluation(row["protocol"], evaluators, rng))

    return {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "activeEditalYear": year,
        "submissions": submissions,
        "evaluations": evaluations,
        "calendar": {
            "year": year,
            "phases": {
                "INSCRICAO": {"label": "Inscrições", "startISO": f"{year}-01-10T00:00:00Z", "endISO": f"{year}-02-10T23:59:59Z"},
                "PROJETO": {"label": "Avaliação de projetos", "startISO": f"{year}-02-15T00:00:00Z", "endISO": f"{year}-03-15T23:59:59Z"},
            },
        },
    }
