"""Services for GradeGate."""

from gradegate.app.services.grader import Grader, MockGrader
from gradegate.app.services.grading_queue import GradingQueue, QueuedJob, QueueSnapshot

__all__ = [
    "Grader",
    "MockGrader",
    "GradingQueue",
    "QueuedJob",
    "QueueSnapshot",
]
