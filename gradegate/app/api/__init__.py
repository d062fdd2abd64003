"""API endpoints package for GradeGate."""

from gradegate.app.api.grade import router as grade_router

__all__ = [
    "grade_router",
]
