"""
Deterministic chart synthesis for deep-mode answers.

Rationale:
- The model is asked to emit charts, but it sometimes omits them.
- In deep mode, when the question carries numbers, comparisons or protocol language,
  the answer must still come with at least one chart: fill the gap with fixed,
  qualitative presets (no LLM call, no inference from data).
- Charts the model did produce are never overridden.
"""

import copy
import logging
from typing import Any, Dict, List

from .signals import Signals, extract

logger = logging.getLogger(__name__)

MAX_SCATTER_POINTS = 6

DEFAULT_RECAP_COLUMNS = ["Levier", "Réglage indicatif", "Effet attendu"]
DEFAULT_RECAP_NOTE = "Tableau indicatif : précise tes paramètres (farine, hydratation, températures) pour l'affiner."

RECAP_ROWS = [
    ["Température de pâte", "23-25 °C en sortie de pétrissage", "Fermentation régulière et prévisible"],
    ["Temps de maturation", "24-48 h au froid (4 °C)", "Arômes et extensibilité accrus"],
    ["Inoculation (levure/levain)", "0,1-0,3 % levure ou 10-20 % levain", "Vitesse de fermentation maîtrisée"],
]
RECAP_NOTE = "Valeurs génériques d'illustration : à ajuster selon ta farine, ton four et ton planning."

RADAR_LABELS = ["Force farine", "Hydratation", "Maturation", "Cuisson", "Rentabilité", "Organisation"]

# Qualitative scores (0-100) per topic, aligned with RADAR_LABELS
RADAR_PRESETS: Dict[str, List[int]] = {
    "farines": [85, 70, 75, 55, 45, 50],
    "fours": [50, 55, 55, 85, 50, 60],
    "economie": [45, 50, 50, 55, 85, 65],
    "concurrence": [55, 55, 60, 65, 75, 60],
    "organisation": [50, 55, 70, 60, 65, 85],
    "general": [60, 60, 60, 60, 60, 60],
}

TIMELINE_STEPS = [
    {"label": "Pétrissage", "minutes": 15, "purpose": "Développer le réseau de gluten sans surchauffer la pâte"},
    {"label": "Pointage", "minutes": 60, "purpose": "Lancer la fermentation à température ambiante"},
    {"label": "Boulage", "minutes": 10, "purpose": "Former des pâtons réguliers et tendus"},
    {"label": "Maturation au froid", "minutes": 2880, "purpose": "Développer arômes et extensibilité à 4 °C"},
    {"label": "Remise en température", "minutes": 120, "purpose": "Détendre les pâtons avant façonnage"},
]

FLOUR_COMPARISON = {"labels": ["Option A (W260)", "Option B (W320)"], "values": [60, 78]}
GENERIC_COMPARISON = {"labels": ["Option A", "Option B"], "values": [55, 70]}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _as_number(value: float):
    return int(value) if float(value).is_integer() else value


def default_recap_table() -> Dict[str, Any]:
    return {"columns": list(DEFAULT_RECAP_COLUMNS), "rows": [], "note": DEFAULT_RECAP_NOTE}


def normalize_envelope(envelope: Any) -> Dict[str, Any]:
    """Make sure list fields are lists and recap_table is a table object."""
    if not isinstance(envelope, dict):
        envelope = {}

    for key in ("charts", "checklist", "questions"):
        if not isinstance(envelope.get(key), list):
            envelope[key] = []

    recap = envelope.get("recap_table")
    if not isinstance(recap, dict):
        envelope["recap_table"] = default_recap_table()
    else:
        if not isinstance(recap.get("columns"), list):
            recap["columns"] = list(DEFAULT_RECAP_COLUMNS)
        if not isinstance(recap.get("rows"), list):
            recap["rows"] = []
    return envelope


def needs_charts(mode: str, signals: Signals) -> bool:
    return mode == "deep" and (signals.has_variables or signals.is_comparison or signals.is_protocol)


def radar_chart(topic: str) -> Dict[str, Any]:
    values = RADAR_PRESETS.get(topic, RADAR_PRESETS["general"])
    return {
        "type": "radar",
        "title": "Profil des leviers",
        "description": "Importance relative des leviers pour ce type de question (échelle qualitative 0-100).",
        "data": {
            "labels": list(RADAR_LABELS),
            "values": [_clamp(v, 0, 100) for v in values],
            "note": "Profil qualitatif, non calculé à partir de tes données.",
        },
    }


def timeline_chart() -> Dict[str, Any]:
    return {
        "type": "timeline",
        "title": "Protocole type (maturation au froid)",
        "description": "Enchaînement indicatif des étapes, de la pâte au façonnage.",
        "data": {
            "steps": copy.deepcopy(TIMELINE_STEPS),
            "note": "Durées génériques : indique tes températures et ton planning pour les ajuster.",
        },
    }


def comparison_chart(topic: str) -> Dict[str, Any]:
    pair = FLOUR_COMPARISON if topic == "farines" else GENERIC_COMPARISON
    return {
        "type": "bar",
        "title": "Comparaison des options",
        "description": "Adéquation qualitative de chaque option au contexte décrit.",
        "data": {
            "labels": list(pair["labels"]),
            "values": list(pair["values"]),
            "unit": "score /100",
            "note": "Scores indicatifs : à confirmer par un test en conditions réelles.",
        },
    }


def scatter_chart(signals: Signals) -> Dict[str, Any]:
    points = []
    seen = set()
    for value, literal in zip(signals.numbers, signals.number_texts):
        if value in seen:
            continue
        seen.add(value)
        index = len(points)
        points.append({
            "x": _as_number(value),
            "y": _clamp(55 + 6 * index, 40, 90),
            "label": literal,
        })
        if len(points) >= MAX_SCATTER_POINTS:
            break
    return {
        "type": "scatter",
        "title": "Valeurs citées",
        "description": "Les valeurs numériques de ta question, à relier à un résultat observé.",
        "data": {
            "x_label": "Valeur citée",
            "y_label": "Score qualitatif",
            "points": points,
            "note": "Score illustratif : donne tes résultats mesurés pour un vrai nuage de points.",
        },
    }


def table_chart(recap_table: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "table",
        "title": "Tableau récapitulatif",
        "description": "Synthèse des leviers principaux.",
        "data": copy.deepcopy(recap_table),
    }


def synthesize(envelope: Any, mode: str, text: str) -> Dict[str, Any]:
    """
    Fill the chart panel when the model left it empty in deep mode.

    Returns the (normalized) envelope. Never raises; charts already present are kept as-is.
    """
    envelope = normalize_envelope(envelope)
    signals = extract(text)

    if not needs_charts(mode, signals) or envelope["charts"]:
        return envelope

    charts: List[Dict[str, Any]] = [radar_chart(signals.topic)]
    if signals.is_protocol:
        charts.append(timeline_chart())
    if signals.is_comparison:
        charts.append(comparison_chart(signals.topic))
    if len(set(signals.numbers)) >= 2:
        charts.append(scatter_chart(signals))

    recap = envelope["recap_table"]
    if not recap["rows"]:
        recap["rows"] = copy.deepcopy(RECAP_ROWS)
        recap["note"] = RECAP_NOTE

    if not charts:
        charts.append(table_chart(recap))

    logger.info(f"Synthesized {len(charts)} chart(s) for topic '{signals.topic}': {[c['type'] for c in charts]}")
    envelope["charts"] = charts
    return envelope
