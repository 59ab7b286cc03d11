# survey_engine/services/reports.py
from __future__ import annotations

import csv
import io
from io import BytesIO
from typing import Any, Iterator

from openpyxl import Workbook

from survey_engine.models.survey import Question

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _distribution_rows(stat: dict[str, Any]) -> Iterator[tuple[str, int]]:
    dist = stat.get("distribution") or {}
    for key, value in dist.items():
        if isinstance(value, dict):  # matrix: fila -> opción -> n
            for option, n in value.items():
                yield f"{key} / {option}", int(n)
        else:
            yield str(key), int(value)


def _question_row(q: Question, stat: dict[str, Any]) -> list[Any]:
    return [
        str(q.id), q.text, q.type, int(stat.get("count") or 0),
        stat.get("average"), stat.get("nps"),
    ]


QUESTION_HEADERS = ["question_id", "texto", "tipo", "n", "promedio", "nps"]


def stats_workbook(survey, questions: list[Question], stats: dict[str, Any]) -> bytes:
    """Excel con resumen, preguntas y distribuciones. Nunca incluye texto libre."""
    wb = Workbook()
    ws_res = wb.active; ws_res.title = "Resumen"

    ws_res.append(["encuesta", "estado", "anonima", "destinatarios", "completadas", "tasa_completitud"])
    ws_res.append([
        survey.title, survey.state, bool(survey.is_anonymous),
        stats["total_recipients"], stats["completed_recipients"], stats["completion_rate"],
    ])

    per_question = stats["per_question"]

    # Preguntas
    ws_q = wb.create_sheet("Preguntas")
    ws_q.append(QUESTION_HEADERS)
    for q in questions:
        ws_q.append(_question_row(q, per_question.get(q.id, {})))

    # Distribuciones (rating / choice)
    ws_d = wb.create_sheet("Distribucion")
    ws_d.append(["question_id", "valor", "n"])
    for q in questions:
        for key, n in _distribution_rows(per_question.get(q.id, {})):
            ws_d.append([str(q.id), key, n])

    # Progreso diario (solo encuestas nominales)
    if stats.get("completions_by_date") is not None:
        ws_p = wb.create_sheet("Progreso")
        ws_p.append(["day", "completed"])
        for r in stats["completions_by_date"]:
            ws_p.append([r["date"], int(r["count"])])

    # Guardar en memoria
    buf = BytesIO(); wb.save(buf); buf.seek(0)
    return buf.getvalue()


def stats_csv(questions: list[Question], stats: dict[str, Any]) -> Iterator[str]:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(QUESTION_HEADERS); yield output.getvalue(); output.seek(0); output.truncate(0)
    for q in questions:
        writer.writerow(_question_row(q, stats["per_question"].get(q.id, {})))
        yield output.getvalue(); output.seek(0); output.truncate(0)
