"""
Course & Topic Scoping
=======================
Course and topic membership is encoded in a statement's context activity tree
(`context.contextActivities.parent` / `grouping`). These helpers read that tree.

Identifier matching is segment-aware: topic "5" matches ".../topic/5" and
".../topic/5/element/9" but never ".../topic/50".
"""

import re
from typing import List, Optional

from .attempts import context_activities
from .models import Statement

COURSE_ACTIVITY_TYPES = (
    "http://id.tincanapi.com/activitytype/lms/course",
    "http://id.tincanapi.com/activitytype/course",
    "http://adlnet.gov/expapi/activities/course",
)

TOPIC_ACTIVITY_TYPES = (
    "https://wiki.haski.app/functions/pages.Topic",
    "http://adlnet.gov/expapi/activities/topic",
)

_NON_COURSE_SEGMENTS = ("/mod/", "/topic/", "/topics/", "/element/", "/activity/")
_COURSE_TAIL_RE = re.compile(r"/courses?/[^/]+$")
_COURSE_ID_PARAM_RE = re.compile(r"[?&]id=(\d+)")
_COURSE_PATH_RE = re.compile(r"/courses?/([^/?#]+)")
_TOPIC_PATH_RE = re.compile(r"/topics?/([^/?#]+)")
_COURSE_OF_TOPIC_RE = re.compile(r"/course/(\d+)/topic/")


def _contains_segment(iri: str, marker: str, ident: str) -> bool:
    """True if `iri` contains `marker + ident` followed by a boundary."""
    needle = f"{marker}{ident}"
    start = iri.find(needle)
    while start != -1:
        end = start + len(needle)
        if end == len(iri) or iri[end] in "/?#&":
            return True
        start = iri.find(needle, start + 1)
    return False


# ── Courses ───────────────────────────────────────────────────────

def is_course_activity(activity: dict) -> bool:
    activity_id = activity.get("id")
    if not activity_id:
        return False
    activity_type = (activity.get("definition") or {}).get("type")
    if activity_type in COURSE_ACTIVITY_TYPES:
        return True
    if any(seg in activity_id for seg in _NON_COURSE_SEGMENTS):
        return False
    if "/course/view.php" in activity_id:
        return True
    return bool(_COURSE_TAIL_RE.search(activity_id))


def extract_course_ids(statement: Statement) -> List[str]:
    """Course activity IRIs from parent + grouping, deduplicated, in order."""
    ids: List[str] = []
    for activity in context_activities(statement):
        if is_course_activity(activity) and activity["id"] not in ids:
            ids.append(activity["id"])
    return ids


def extract_course_id_from_url(url: Optional[str]) -> Optional[str]:
    """Moodle-style ?id=42, else the segment after /course/ or /courses/."""
    if not url:
        return None
    match = _COURSE_ID_PARAM_RE.search(url)
    if match:
        return match.group(1)
    match = _COURSE_PATH_RE.search(url)
    if match:
        return match.group(1)
    return None


def extract_course_id_from_topic_url(topic_url: Optional[str]) -> Optional[str]:
    if not topic_url:
        return None
    match = _COURSE_OF_TOPIC_RE.search(topic_url)
    return match.group(1) if match else None


def matches_course(course_id: Optional[str], target_course_id: Optional[str]) -> bool:
    """Compare two course references which may each be a bare id or an IRI."""
    if not course_id or not target_course_id:
        return False
    if course_id == target_course_id:
        return True
    extracted = extract_course_id_from_url(course_id)
    extracted_target = extract_course_id_from_url(target_course_id)
    if "://" not in target_course_id and extracted == target_course_id:
        return True
    if "://" not in course_id and course_id == extracted_target:
        return True
    if extracted and extracted_target:
        return extracted == extracted_target
    return False


def course_key(course_iri: str) -> str:
    """Short course identifier used as the grouping key of cross-course metrics."""
    return extract_course_id_from_url(course_iri) or course_iri


def belongs_to_course(statement: Statement, course_id: Optional[str]) -> bool:
    """
    A statement is in a course if any parent/grouping activity is that course
    (exact, /course/{id}, /courses/{id}) or sits below it (…/course/{id}/topic/…).
    """
    if not course_id:
        return False
    for activity in context_activities(statement):
        activity_id = activity.get("id")
        if not activity_id:
            continue
        if activity_id == course_id:
            return True
        if _contains_segment(activity_id, "/course/", course_id):
            return True
        if _contains_segment(activity_id, "/courses/", course_id):
            return True
        if is_course_activity(activity) and matches_course(activity_id, course_id):
            return True
    return False


# ── Topics ────────────────────────────────────────────────────────

def is_topic_activity(activity: dict) -> bool:
    activity_id = activity.get("id")
    if not activity_id:
        return False
    activity_type = (activity.get("definition") or {}).get("type")
    if activity_type in TOPIC_ACTIVITY_TYPES:
        return True
    return "/topic/" in activity_id or "/topics/" in activity_id


def extract_topic_ids(statement: Statement) -> List[str]:
    """Topic activity IRIs from parent + grouping, deduplicated, in order."""
    ids: List[str] = []
    for activity in context_activities(statement):
        if is_topic_activity(activity) and activity["id"] not in ids:
            ids.append(activity["id"])
    return ids


def extract_topic_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = _TOPIC_PATH_RE.search(url)
    return match.group(1) if match else None


def topic_key(topic_iri: str) -> str:
    return extract_topic_id_from_url(topic_iri) or topic_iri


def belongs_to_topic(statement: Statement, topic_id: Optional[str]) -> bool:
    """A statement is in a topic if a parent activity is, or contains, /topic/{id}."""
    if not topic_id:
        return False
    for activity in context_activities(statement, "parent"):
        activity_id = activity.get("id")
        if not activity_id:
            continue
        if activity_id == topic_id:
            return True
        if _contains_segment(activity_id, "/topic/", topic_id):
            return True
        if _contains_segment(activity_id, "/topics/", topic_id):
            return True
    return False


def topics_in_course(statement: Statement, course_id: str) -> List[str]:
    """
    Topic keys of a statement, provided the statement belongs to `course_id`
    either directly or through a topic IRI of the form …/course/{id}/topic/….
    """
    topic_iris = extract_topic_ids(statement)
    if not topic_iris:
        return []
    in_course = belongs_to_course(statement, course_id) or any(
        matches_course(extract_course_id_from_topic_url(iri), course_id)
        for iri in topic_iris
    )
    if not in_course:
        return []
    keys: List[str] = []
    for iri in topic_iris:
        key = topic_key(iri)
        if key not in keys:
            keys.append(key)
    return keys
