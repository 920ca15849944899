"""Metric providers. default_providers() returns one instance of every metric in the catalog."""

from typing import List

from .base import MetricProvider
from .clicks import ElementClicksProvider, ElementTypeTimeSpentProvider
from .course import (
    CourseCompletionDatesProvider,
    CourseCompletionProvider,
    CourseLastElementsProvider,
    CourseMaxScoreProvider,
    CourseTimeSpentProvider,
    CourseTotalScoreProvider,
    LearningEngagementProvider,
)
from .cross_course import (
    CoursesMaxScoresProvider,
    CoursesScoresProvider,
    CoursesTimeSpentProvider,
    CoursesTotalScoresProvider,
    UserLastElementsProvider,
)
from .element import (
    ElementBestAttemptDateProvider,
    ElementBestAttemptScoreProvider,
    ElementCompletionDatesProvider,
    ElementCompletionStatusProvider,
    ElementLastCompletedProvider,
    ElementTimeSpentProvider,
    TopicElementsBestAttemptsProvider,
    TopicElementsMaxScoresProvider,
    TopicElementsTimeSpentProvider,
)
from .topic import (
    CourseTopicsMaxScoresProvider,
    CourseTopicsScoresProvider,
    CourseTopicsTimeSpentProvider,
    TopicCompletionDatesProvider,
    TopicLastElementsProvider,
    TopicMasteryProvider,
    TopicMaxScoreProvider,
    TopicTimeSpentProvider,
    TopicTotalScoreProvider,
)

PROVIDER_CLASSES = (
    # Course level
    CourseCompletionProvider,
    CourseTotalScoreProvider,
    CourseMaxScoreProvider,
    CourseTimeSpentProvider,
    CourseLastElementsProvider,
    CourseCompletionDatesProvider,
    LearningEngagementProvider,
    UserLastElementsProvider,
    # Topic level
    TopicTotalScoreProvider,
    TopicMaxScoreProvider,
    TopicTimeSpentProvider,
    TopicLastElementsProvider,
    TopicCompletionDatesProvider,
    TopicMasteryProvider,
    CourseTopicsScoresProvider,
    CourseTopicsMaxScoresProvider,
    CourseTopicsTimeSpentProvider,
    # Element level
    ElementBestAttemptDateProvider,
    ElementBestAttemptScoreProvider,
    ElementCompletionStatusProvider,
    ElementCompletionDatesProvider,
    ElementLastCompletedProvider,
    ElementTimeSpentProvider,
    TopicElementsBestAttemptsProvider,
    TopicElementsMaxScoresProvider,
    TopicElementsTimeSpentProvider,
    ElementClicksProvider,
    ElementTypeTimeSpentProvider,
    # Across courses
    CoursesTotalScoresProvider,
    CoursesScoresProvider,
    CoursesMaxScoresProvider,
    CoursesTimeSpentProvider,
)


def default_providers() -> List[MetricProvider]:
    return [cls() for cls in PROVIDER_CLASSES]


__all__ = ["MetricProvider", "PROVIDER_CLASSES", "default_providers"]
