# izamed/services/ai/heuristics.py
"""
Campos derivados del texto de la AI: confianza, urgencia, warnings,
diagnósticos y estudios recomendados.

Todas las keywords salen de LocaleTables (JSON por idioma), el código no
tiene strings de un idioma en particular.
"""
import json
import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

LOCALES_DIR = Path(__file__).parent / "locales"

MAX_DIAGNOSES = 8
MIN_CONFIDENCE = 0.10
MAX_CONFIDENCE = 0.95

CERTAINTY_BONUS, CERTAINTY_CAP = 0.05, 0.15
UNCERTAINTY_PENALTY, UNCERTAINTY_CAP = 0.08, 0.25
HEDGING_PENALTY, HEDGING_CAP = 0.03, 0.10

_NUMBERED_ITEM = re.compile(r"^\s*\d+[.)]\s+(.+?)\s*$", re.MULTILINE)
_BULLET_ITEM = re.compile(r"^\s*[•\-*]\s+(.+?)\s*$", re.MULTILINE)
_TAGS = re.compile(r"<[^>]+>")


class UrgencyLevel(str, Enum):
    routine = "routine"
    high = "high"
    emergency = "emergency"


class LabTestPattern(BaseModel):
    pattern: str
    name: str


class FallbackTexts(BaseModel):
    chat_text: str
    chat_warnings: list[str]
    chat_actions: list[str]
    diagnosis_guidance: str          # template con {symptoms}
    diagnosis_candidates: list[str]
    diagnosis_tests: list[str]
    diagnosis_actions: list[str]
    diagnosis_warnings: list[str]
    image_summary: str
    image_warnings: list[str]
    image_actions: list[str]


class LocaleTables(BaseModel):
    language: str
    certainty_words: list[str]
    uncertainty_words: list[str]
    hedging_phrases: list[str]
    emergency_keywords: list[str]
    high_urgency_keywords: list[str]
    urgent_symptom_keywords: list[str]
    medication_keywords: list[str]
    urgent_symptom_warning: str
    medication_warning: str
    standard_disclaimers: list[str]
    diagnosis_actions: list[str]
    test_patterns: list[LabTestPattern]
    fallback: FallbackTexts


def load_locale(locale: str = "ro", path: str | Path | None = None) -> LocaleTables:
    """Carga las tablas de un JSON propio (path) o de las que vienen con el paquete."""
    source = Path(path) if path else LOCALES_DIR / f"{locale}.json"
    if not source.is_file():
        raise ValueError(f"Unknown AI locale table: {source}")
    return LocaleTables.model_validate(json.loads(source.read_text(encoding="utf-8")))


def _count(text: str, words: list[str]) -> int:
    return sum(text.count(w.lower()) for w in words)


def _contains_any(text: str, words: list[str]) -> bool:
    return any(w.lower() in text for w in words)


def _clean_item(item: str) -> str:
    return _TAGS.sub("", item).strip(" *_:\t")


class ResponseAnalyzer:
    def __init__(self, tables: LocaleTables) -> None:
        self.tables = tables
        self._test_patterns = [
            (re.compile(tp.pattern, re.IGNORECASE), tp.name) for tp in tables.test_patterns
        ]

    def confidence_score(self, text: str, baseline: float = 0.75) -> float:
        lower = text.lower()
        bonus = min(_count(lower, self.tables.certainty_words) * CERTAINTY_BONUS, CERTAINTY_CAP)
        uncertainty = min(_count(lower, self.tables.uncertainty_words) * UNCERTAINTY_PENALTY, UNCERTAINTY_CAP)
        hedging = min(_count(lower, self.tables.hedging_phrases) * HEDGING_PENALTY, HEDGING_CAP)
        score = baseline + bonus - uncertainty - hedging
        return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, score)), 4)

    def urgency_level(self, text: str) -> UrgencyLevel:
        lower = text.lower()
        if _contains_any(lower, self.tables.emergency_keywords):
            return UrgencyLevel.emergency
        if _contains_any(lower, self.tables.high_urgency_keywords):
            return UrgencyLevel.high
        return UrgencyLevel.routine

    def has_urgent_symptoms(self, text: str) -> bool:
        return _contains_any(text.lower(), self.tables.urgent_symptom_keywords)

    def safety_warnings(self, text: str) -> list[str]:
        lower = text.lower()
        warnings: list[str] = []
        if _contains_any(lower, self.tables.urgent_symptom_keywords):
            warnings.append(self.tables.urgent_symptom_warning)
        if _contains_any(lower, self.tables.medication_keywords):
            warnings.append(self.tables.medication_warning)
        return warnings + list(self.tables.standard_disclaimers)

    def extract_diagnoses(self, text: str) -> list[str]:
        # listas numeradas primero, bullets sólo si no hubo números
        items = _NUMBERED_ITEM.findall(text) or _BULLET_ITEM.findall(text)
        diagnoses: list[str] = []
        for item in items:
            diagnosis = _clean_item(item)
            if 10 < len(diagnosis) < 200 and diagnosis not in diagnoses:
                diagnoses.append(diagnosis)
        return diagnoses[:MAX_DIAGNOSES]

    def extract_recommended_tests(self, text: str) -> list[str]:
        tests: list[str] = []
        for pattern, name in self._test_patterns:
            if pattern.search(text) and name not in tests:
                tests.append(name)
        return tests
