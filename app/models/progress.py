from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """One student's state on one lesson.

    Many-to-one with Enrollment via (student_id, course_id).
    """

    student_id: str
    course_id: str
    lesson_id: str
    completed: bool = False
    last_accessed: datetime | None = None
