"""xAPI verb IRIs grouped by what the metrics care about."""

from typing import Tuple

ADL = "http://adlnet.gov/expapi/verbs"
HASKI_XAPI = "https://wiki.haski.app/variables/xapi"
HASKI_SERVICES = "https://wiki.haski.app/variables/services"
ACTIVITY_STREAMS = "http://activitystrea.ms/schema/1.0"

COMPLETED = f"{ADL}/completed"
PASSED = f"{ADL}/passed"
FAILED = f"{ADL}/failed"
ANSWERED = f"{ADL}/answered"
EXPERIENCED = f"{ADL}/experienced"
ATTEMPTED = f"{ADL}/attempted"

# Verbs that mark a learner as having finished an element or course.
FINISHING_VERBS: Tuple[str, ...] = (
    f"{HASKI_XAPI}.completed",
    COMPLETED,
    PASSED,
)

ANSWER_VERBS: Tuple[str, ...] = (
    ANSWERED,
    f"{HASKI_XAPI}.answered",
    f"{HASKI_SERVICES}.answered",
)

ENGAGEMENT_VERBS: Tuple[str, ...] = (
    EXPERIENCED,
    f"{ACTIVITY_STREAMS}/open",
    f"{HASKI_XAPI}.viewed",
    f"{HASKI_XAPI}.interacted",
    ATTEMPTED,
    f"{HASKI_XAPI}.clicked",
    f"{HASKI_SERVICES}.clicked",
    f"{HASKI_SERVICES}.changed",
    f"{HASKI_SERVICES}.selected",
    f"{HASKI_SERVICES}.pressed",
    f"{HASKI_SERVICES}.started",
)

CLICK_VERBS: Tuple[str, ...] = (
    f"{HASKI_XAPI}.clicked",
    f"{HASKI_SERVICES}.clicked",
    f"{ACTIVITY_STREAMS}/open",
    f"{ACTIVITY_STREAMS}/view",
    "https://wiki.haski.app/answered",
    "https://wiki.haski.app/viewed",
)

MASTERY_VERBS: Tuple[str, ...] = ANSWER_VERBS + (
    COMPLETED,
    PASSED,
    FAILED,
    f"{HASKI_SERVICES}.completed",
)
