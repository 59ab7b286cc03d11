# survey_engine/services/question_types.py
"""
Registro de tipos de pregunta.

Cada tipo es una entrada que sabe tres cosas:
- normalizar/validar su configuración al crear la pregunta,
- validar una respuesta (forma, rango, opciones),
- agregar respuestas en un Stat.

La agregación se expresa como acumulador (new_accumulator / accumulate /
finalize). ``aggregate`` es simplemente el fold completo, así que el camino
batch y el incremental (ver aggregation.py) comparten el mismo código.

Agregar un tipo nuevo = registrar una clase aquí; ni el collector ni el
motor de agregación cambian.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from fractions import Fraction
from typing import Any, Iterable, Optional

from survey_engine.core.config import settings
from survey_engine.core.errors import (
    InvalidQuestionConfigError,
    UnknownQuestionTypeError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RATING = "rating"
CHOICE = "choice"
TEXT = "text"
OTHER = "other"


def _round(x: Fraction) -> float:
    return round(float(x), settings.STATS_DECIMALS)


def _is_number(v: Any) -> bool:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    return math.isfinite(v)


def _exact(v: Any) -> Fraction:
    # str() evita arrastrar el error binario de los float (0.1 -> 1/10)
    return Fraction(str(v))


def _key(f: Fraction) -> int | float:
    return int(f) if f.denominator == 1 else float(f)


def _options(config: dict, name: str = "options") -> list[str]:
    raw = config.get(name)
    if not isinstance(raw, list) or not raw:
        raise InvalidQuestionConfigError(f"'{name}' debe ser una lista no vacía")
    values = [str(o).strip() for o in raw]
    if any(not v for v in values):
        raise InvalidQuestionConfigError(f"'{name}' no admite valores vacíos")
    if len(set(values)) != len(values):
        raise InvalidQuestionConfigError(f"'{name}' tiene valores repetidos")
    return values


class QuestionType:
    tag: str = ""
    family: str = OTHER

    # -------------------- configuración -------------------- #

    def normalize_config(self, config: Optional[dict]) -> dict:
        return dict(config or {})

    # -------------------- validación -------------------- #

    def is_missing(self, value: Any) -> bool:
        return value is None

    def check(self, config: dict, value: Any) -> Optional[tuple[str, str]]:
        """Devuelve (code, message) si la respuesta no es válida."""
        return None

    def validate(self, question, answer: Any, is_required: bool) -> Optional[ValidationError]:
        if self.is_missing(answer):
            if is_required:
                return ValidationError(question.id, "required", "Respuesta obligatoria")
            return None
        problem = self.check(question.config or {}, answer)
        if problem:
            code, message = problem
            return ValidationError(question.id, code, message)
        return None

    # -------------------- agregación -------------------- #

    def new_accumulator(self, config: dict) -> dict:
        return {"count": 0}

    def accumulate(self, acc: dict, config: dict, value: Any) -> None:
        acc["count"] += 1

    def finalize(self, acc: dict, config: dict) -> dict:
        return {"count": acc["count"]}

    def aggregate(self, question, answers: Iterable[Any]) -> dict:
        config = question.config or {}
        acc = self.new_accumulator(config)
        for value in answers:
            self.accumulate(acc, config, value)
        return {"type": self.tag, **self.finalize(acc, config)}


# ==================== familia rating ==================== #

class RatingType(QuestionType):
    family = RATING
    default_min: int | float = 1
    default_max: int | float = 5
    default_step: int | float = 1

    def normalize_config(self, config):
        cfg = dict(config or {})
        lo = cfg.get("min", self.default_min)
        hi = cfg.get("max", self.default_max)
        step = cfg.get("step", self.default_step)
        if not (_is_number(lo) and _is_number(hi) and _is_number(step)):
            raise InvalidQuestionConfigError("min, max y step deben ser numéricos")
        if step <= 0 or lo >= hi:
            raise InvalidQuestionConfigError("Se requiere min < max y step > 0")
        span = (_exact(hi) - _exact(lo)) / _exact(step)
        if span.denominator != 1:
            raise InvalidQuestionConfigError("El rango no es múltiplo de step")
        if span + 1 > 1001:
            raise InvalidQuestionConfigError("Escala demasiado grande (máx. 1001 puntos)")
        cfg.update({"min": lo, "max": hi, "step": step})

        labels = cfg.get("labels")
        if labels is not None:
            if not isinstance(labels, list) or len(labels) != int(span) + 1:
                raise InvalidQuestionConfigError("'labels' debe tener una etiqueta por punto de la escala")
            cfg["labels"] = [str(x) for x in labels]
        return cfg

    def points(self, config: dict) -> list[Fraction]:
        lo, hi, step = _exact(config["min"]), _exact(config["max"]), _exact(config["step"])
        n = int((hi - lo) / step) + 1
        return [lo + i * step for i in range(n)]

    def check(self, config, value):
        if not _is_number(value):
            return "type_mismatch", "Se esperaba un número"
        v, lo, hi = _exact(value), _exact(config["min"]), _exact(config["max"])
        if v < lo or v > hi:
            return "out_of_range", f"Valor fuera de rango [{config['min']}, {config['max']}]"
        if ((v - lo) / _exact(config["step"])).denominator != 1:
            return "not_on_scale", "El valor no coincide con un punto de la escala"
        return None

    def new_accumulator(self, config):
        return {
            "count": 0,
            "sum": Fraction(0),
            "distribution": {p: 0 for p in self.points(config)},
        }

    def accumulate(self, acc, config, value):
        v = _exact(value)
        acc["count"] += 1
        acc["sum"] += v
        acc["distribution"][v] = acc["distribution"].get(v, 0) + 1

    def finalize(self, acc, config):
        count = acc["count"]
        out = {
            "count": count,
            "average": _round(acc["sum"] / count) if count else None,
            # todas las claves de la escala, aunque tengan 0 (para los gráficos)
            "distribution": {_key(p): n for p, n in sorted(acc["distribution"].items())},
        }
        if config.get("labels"):
            out["labels"] = {_key(p): lbl for p, lbl in zip(self.points(config), config["labels"])}
        return out


class ScaleType(RatingType):
    tag = "scale"


class StarType(RatingType):
    tag = "star"


class LikertType(RatingType):
    tag = "likert"


class SemanticType(RatingType):
    tag = "semantic"
    default_max = 7


class SliderType(RatingType):
    tag = "slider"
    default_min = 0
    default_max = 100


class NpsType(RatingType):
    tag = "nps"
    default_min = 0
    default_max = 10

    def normalize_config(self, config):
        cfg = super().normalize_config(config)
        if (cfg["min"], cfg["max"], cfg["step"]) != (0, 10, 1):
            raise InvalidQuestionConfigError("NPS usa siempre la escala 0..10")
        return cfg

    def finalize(self, acc, config):
        out = super().finalize(acc, config)
        count = acc["count"]
        if count:
            dist = acc["distribution"]
            promoters = sum(n for p, n in dist.items() if p >= 9)
            detractors = sum(n for p, n in dist.items() if p <= 6)
            out["nps"] = _round(Fraction(promoters - detractors, count) * 100)
        else:
            out["nps"] = None
        return out


# ==================== familia choice ==================== #

class SingleChoiceType(QuestionType):
    tag = "single"
    family = CHOICE

    def normalize_config(self, config):
        cfg = dict(config or {})
        cfg["options"] = _options(cfg)
        return cfg

    def is_missing(self, value):
        return value is None or value == ""

    def check(self, config, value):
        if not isinstance(value, str):
            return "type_mismatch", "Se esperaba una opción"
        if value not in config["options"]:
            return "unknown_option", f"Opción desconocida: {value}"
        return None

    def new_accumulator(self, config):
        return {"count": 0, "distribution": {o: 0 for o in config["options"]}}

    def accumulate(self, acc, config, value):
        acc["count"] += 1
        acc["distribution"][value] = acc["distribution"].get(value, 0) + 1

    def finalize(self, acc, config):
        return {"count": acc["count"], "distribution": dict(acc["distribution"])}


class DropdownType(SingleChoiceType):
    tag = "dropdown"


class ImageChoiceType(SingleChoiceType):
    tag = "image"

    def normalize_config(self, config):
        cfg = dict(config or {})
        raw = cfg.get("options")
        if not isinstance(raw, list) or not raw:
            raise InvalidQuestionConfigError("'options' debe ser una lista no vacía")
        # acepta "valor" o {"value": ..., "image_url": ...}
        values, images = [], {}
        for opt in raw:
            if isinstance(opt, dict):
                value = str(opt.get("value") or "").strip()
                if opt.get("image_url"):
                    images[value] = str(opt["image_url"])
            else:
                value = str(opt).strip()
            values.append(value)
        cfg["options"] = values
        cfg["options"] = _options(cfg)
        cfg["images"] = images
        return cfg


class MultipleChoiceType(SingleChoiceType):
    tag = "multiple"

    def normalize_config(self, config):
        cfg = super().normalize_config(config)
        lo = cfg.get("min_selections")
        hi = cfg.get("max_selections")
        for v in (lo, hi):
            if v is not None and (not isinstance(v, int) or isinstance(v, bool) or v < 0):
                raise InvalidQuestionConfigError("min/max_selections deben ser enteros >= 0")
        if lo is not None and hi is not None and lo > hi:
            raise InvalidQuestionConfigError("min_selections > max_selections")
        return cfg

    def is_missing(self, value):
        return value is None or value == []

    def check(self, config, value):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            return "type_mismatch", "Se esperaba una lista de opciones"
        unknown = [v for v in value if v not in config["options"]]
        if unknown:
            return "unknown_option", f"Opciones desconocidas: {unknown}"
        if len(set(value)) != len(value):
            return "duplicate_option", "Opciones repetidas"
        lo, hi = config.get("min_selections"), config.get("max_selections")
        if lo is not None and len(value) < lo:
            return "too_few", f"Seleccione al menos {lo}"
        if hi is not None and len(value) > hi:
            return "too_many", f"Seleccione como máximo {hi}"
        return None

    def accumulate(self, acc, config, value):
        # una respuesta suma 1 a cada opción elegida
        acc["count"] += 1
        for option in value:
            acc["distribution"][option] = acc["distribution"].get(option, 0) + 1


class RankingType(MultipleChoiceType):
    tag = "ranking"

    def normalize_config(self, config):
        cfg = SingleChoiceType.normalize_config(self, config)
        cfg["require_all"] = bool(cfg.get("require_all", True))
        return cfg

    def check(self, config, value):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            return "type_mismatch", "Se esperaba una lista ordenada de opciones"
        unknown = [v for v in value if v not in config["options"]]
        if unknown:
            return "unknown_option", f"Opciones desconocidas: {unknown}"
        if len(set(value)) != len(value):
            return "duplicate_option", "Opciones repetidas"
        if config.get("require_all", True) and len(value) != len(config["options"]):
            return "incomplete", "Debe ordenar todas las opciones"
        return None

    def new_accumulator(self, config):
        acc = super().new_accumulator(config)
        acc["rank_sum"] = {o: 0 for o in config["options"]}
        return acc

    def accumulate(self, acc, config, value):
        super().accumulate(acc, config, value)
        for pos, option in enumerate(value, start=1):
            acc["rank_sum"][option] = acc["rank_sum"].get(option, 0) + pos

    def finalize(self, acc, config):
        out = super().finalize(acc, config)
        out["average_rank"] = {
            o: (_round(Fraction(acc["rank_sum"][o], n)) if n else None)
            for o, n in acc["distribution"].items()
        }
        return out


class MatrixType(QuestionType):
    tag = "matrix"
    family = CHOICE

    def normalize_config(self, config):
        cfg = dict(config or {})
        cfg["rows"] = _options(cfg, "rows")
        cfg["options"] = _options(cfg)
        return cfg

    def is_missing(self, value):
        return value is None or value == {}

    def check(self, config, value):
        if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
            return "type_mismatch", "Se esperaba un objeto fila -> opción"
        unknown_rows = [r for r in value if r not in config["rows"]]
        if unknown_rows:
            return "unknown_row", f"Filas desconocidas: {unknown_rows}"
        bad = [v for v in value.values() if v not in config["options"]]
        if bad:
            return "unknown_option", f"Opciones desconocidas: {bad}"
        return None

    def validate(self, question, answer, is_required):
        err = super().validate(question, answer, is_required)
        if err is None and is_required and isinstance(answer, dict):
            missing = [r for r in (question.config or {}).get("rows", []) if r not in answer]
            if missing:
                return ValidationError(question.id, "incomplete", f"Filas sin responder: {missing}")
        return err

    def new_accumulator(self, config):
        return {
            "count": 0,
            "distribution": {r: {o: 0 for o in config["options"]} for r in config["rows"]},
        }

    def accumulate(self, acc, config, value):
        acc["count"] += 1
        for row, option in value.items():
            acc["distribution"][row][option] += 1

    def finalize(self, acc, config):
        return {
            "count": acc["count"],
            "distribution": {r: dict(opts) for r, opts in acc["distribution"].items()},
        }


class ToggleType(QuestionType):
    tag = "toggle"
    family = CHOICE

    def check(self, config, value):
        if not isinstance(value, bool):
            return "type_mismatch", "Se esperaba verdadero/falso"
        return None

    def new_accumulator(self, config):
        return {"count": 0, "distribution": {"true": 0, "false": 0}}

    def accumulate(self, acc, config, value):
        acc["count"] += 1
        acc["distribution"]["true" if value else "false"] += 1

    def finalize(self, acc, config):
        return {"count": acc["count"], "distribution": dict(acc["distribution"])}


# ==================== texto y otros ==================== #

class FreeTextType(QuestionType):
    """
    Texto libre. El Stat es solo el conteo: el contenido nunca entra en
    estadísticas compartidas (en anónimas podría identificar a la persona).
    """

    tag = "text"
    family = TEXT

    def normalize_config(self, config):
        cfg = dict(config or {})
        max_length = cfg.get("max_length", 5000)
        if not isinstance(max_length, int) or isinstance(max_length, bool) or max_length <= 0:
            raise InvalidQuestionConfigError("max_length debe ser entero > 0")
        cfg["max_length"] = max_length
        return cfg

    def is_missing(self, value):
        return value is None or (isinstance(value, str) and not value.strip())

    def check(self, config, value):
        if not isinstance(value, str):
            return "type_mismatch", "Se esperaba texto"
        if len(value) > config.get("max_length", 5000):
            return "too_long", "Texto demasiado largo"
        return None


class DateTimeType(QuestionType):
    tag = "datetime"

    def is_missing(self, value):
        return value is None or value == ""

    def check(self, config, value):
        if not isinstance(value, str):
            return "type_mismatch", "Se esperaba fecha ISO-8601"
        try:
            datetime.fromisoformat(value)
        except ValueError:
            return "type_mismatch", "Fecha inválida"
        return None


class NumericType(QuestionType):
    tag = "numeric"

    def normalize_config(self, config):
        cfg = dict(config or {})
        lo, hi = cfg.get("min"), cfg.get("max")
        for v in (lo, hi):
            if v is not None and not _is_number(v):
                raise InvalidQuestionConfigError("min/max deben ser numéricos")
        if lo is not None and hi is not None and lo > hi:
            raise InvalidQuestionConfigError("min > max")
        return cfg

    def check(self, config, value):
        if not _is_number(value):
            return "type_mismatch", "Se esperaba un número"
        lo, hi = config.get("min"), config.get("max")
        if (lo is not None and value < lo) or (hi is not None and value > hi):
            return "out_of_range", "Valor fuera de rango"
        return None

    def new_accumulator(self, config):
        return {"count": 0, "sum": Fraction(0), "min": None, "max": None}

    def accumulate(self, acc, config, value):
        v = _exact(value)
        acc["count"] += 1
        acc["sum"] += v
        acc["min"] = v if acc["min"] is None else min(acc["min"], v)
        acc["max"] = v if acc["max"] is None else max(acc["max"], v)

    def finalize(self, acc, config):
        count = acc["count"]
        return {
            "count": count,
            "average": _round(acc["sum"] / count) if count else None,
            "min": _key(acc["min"]) if acc["min"] is not None else None,
            "max": _key(acc["max"]) if acc["max"] is not None else None,
        }


class ConstantSumType(QuestionType):
    tag = "constant_sum"

    def normalize_config(self, config):
        cfg = dict(config or {})
        cfg["options"] = _options(cfg)
        total = cfg.get("total", 100)
        if not _is_number(total) or total <= 0:
            raise InvalidQuestionConfigError("total debe ser > 0")
        cfg["total"] = total
        return cfg

    def is_missing(self, value):
        return value is None or value == {}

    def check(self, config, value):
        if not isinstance(value, dict) or not all(_is_number(v) for v in value.values()):
            return "type_mismatch", "Se esperaba un objeto opción -> número"
        unknown = [k for k in value if k not in config["options"]]
        if unknown:
            return "unknown_option", f"Opciones desconocidas: {unknown}"
        if any(v < 0 for v in value.values()):
            return "out_of_range", "No se admiten valores negativos"
        if sum(_exact(v) for v in value.values()) != _exact(config["total"]):
            return "bad_total", f"La suma debe ser {config['total']}"
        return None

    def new_accumulator(self, config):
        return {"count": 0, "sums": {o: Fraction(0) for o in config["options"]}}

    def accumulate(self, acc, config, value):
        acc["count"] += 1
        for option, amount in value.items():
            acc["sums"][option] += _exact(amount)

    def finalize(self, acc, config):
        count = acc["count"]
        return {
            "count": count,
            "average_allocation": {
                o: (_round(s / count) if count else None) for o, s in acc["sums"].items()
            },
        }


# ==================== registro ==================== #

class QuestionTypeRegistry:
    """Registro de tipos de pregunta (tag -> QuestionType)"""

    def __init__(self):
        self._types: dict[str, QuestionType] = {}

    def register(self, qtype: QuestionType) -> None:
        if not qtype.tag:
            raise ValueError(f"{type(qtype).__name__} no define tag")
        self._types[qtype.tag] = qtype
        logger.debug("Tipo de pregunta registrado: %s (%s)", qtype.tag, qtype.family)

    def describe(self, tag: str) -> QuestionType:
        try:
            return self._types[tag]
        except KeyError:
            raise UnknownQuestionTypeError(f"Tipo de pregunta desconocido: {tag!r}")

    def is_registered(self, tag: str) -> bool:
        return tag in self._types

    def tags(self) -> list[str]:
        return sorted(self._types)

    def list_types(self) -> list[dict[str, str]]:
        return [{"type": t.tag, "family": t.family} for t in self._types.values()]


registry = QuestionTypeRegistry()
for _qtype in (
    ScaleType(), StarType(), LikertType(), SemanticType(), SliderType(), NpsType(),
    SingleChoiceType(), DropdownType(), ImageChoiceType(), MultipleChoiceType(),
    RankingType(), MatrixType(), ToggleType(),
    FreeTextType(), DateTimeType(), NumericType(), ConstantSumType(),
):
    registry.register(_qtype)
