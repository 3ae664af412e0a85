"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from gradebook.api.v1.endpoints import exams, marks, report_cards

api_router = APIRouter()

# Exam lifecycle and subject snapshots (school-scoped)
api_router.include_router(
    exams.router,
    prefix="/exams",
    tags=["Exams"],
)

# Marks entry (school-scoped, teaching assignments apply)
api_router.include_router(
    marks.router,
    prefix="/marks",
    tags=["Marks"],
)

# Report cards (school-scoped)
api_router.include_router(
    report_cards.router,
    prefix="/report-cards",
    tags=["Report Cards"],
)
