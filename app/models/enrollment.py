from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Enrollment:
    student_id: str
    course_id: str
    enrollment_date: datetime | None
    progress: int | None = 0  # 0-100 as stored; may lag behind `completed`
    completed: bool = False

    @property
    def is_complete(self) -> bool:
        """Either signal counts: the stored flag or full progress."""
        return self.completed or (self.progress or 0) >= 100

    @property
    def has_discrepancy(self) -> bool:
        """Flag and progress disagree (one says done, the other does not)."""
        return self.completed != ((self.progress or 0) >= 100)

    @property
    def effective_progress(self) -> int:
        if self.completed:
            return 100
        return max(0, min(self.progress or 0, 100))
