"""
Learning Element Types
=======================
Classifies a statement's object into a learning-element type code from its
activity type IRI and (HTML-stripped) display name. German names are checked
before English ones; a leading abbreviation ("EX - Beispiel") is the last resort.
"""

import re
from typing import Tuple

from .models import Statement

UNKNOWN = "unknown"

ELEMENT_TYPE_CODES: Tuple[str, ...] = (
    "CT",  # Kurzübersicht / commentary
    "CO",  # Erklärung / content object
    "RQ",  # Reflexion / reflection quiz
    "SE",  # Selbsteinschätzungstest / self-assessment
    "FO",  # Forum
    "RM",  # Zusatzliteratur / reading material
    "AN",  # Animation
    "EC",  # Übung / exercise
    "EX",  # Beispiel / example
    "RA",  # Anwendung / real-world application
    "CC",  # Zusammenfassung / conclusion
    "AS",  # Aufgabe / assignment
)

# Ordered: first hit wins.
_KEYWORDS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("kurzübersicht", "kommentar"), "CT"),
    (("erklärung", "inhalt"), "CO"),
    (("reflexion", "feedback"), "RQ"),
    (("selbsteinschätzungstest", "selftest"), "SE"),
    (("forum", "diskussion"), "FO"),
    (("zusatzliteratur", "literatur"), "RM"),
    (("animation",), "AN"),
    (("übung", "practice"), "EC"),
    (("beispiel",), "EX"),
    (("anwendung", "realitätsbezug"), "RA"),
    (("zusammenfassung", "fazit"), "CC"),
    (("aufgabe", "hausaufgabe"), "AS"),
    (("commentary",), "CT"),
    (("content",), "CO"),
    (("reflection", "quiz"), "RQ"),
    (("self-assessment",), "SE"),
    (("discussion",), "FO"),
    (("reading", "resource"), "RM"),
    (("exercise",), "EC"),
    (("example",), "EX"),
    (("application",), "RA"),
    (("conclusion",), "CC"),
    (("assignment", "homework"), "AS"),
)

_TAG_RE = re.compile(r"<[^>]*>")
_ABBREV_SPLIT_RE = re.compile(r"\s|-")


def element_name(statement: Statement) -> str:
    """Display name (en, else en-US) with HTML tags removed."""
    definition = (statement.get("object") or {}).get("definition") or {}
    name = (definition.get("name") or {})
    raw = name.get("en") or name.get("en-US") or ""
    return _TAG_RE.sub("", raw).strip()


def detect_element_type(statement: Statement) -> str:
    definition = (statement.get("object") or {}).get("definition") or {}
    name = element_name(statement)
    haystack = f"{definition.get('type') or ''} {name}".lower().replace("_", "-")

    for keywords, code in _KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return code

    if name:
        abbrev = _ABBREV_SPLIT_RE.split(name)[0].upper()
        if abbrev in ELEMENT_TYPE_CODES:
            return abbrev
    return UNKNOWN
