from fastapi import APIRouter

from learnportal.api.routes.health import router as health_router
from learnportal.api.routes.staff import router as staff_router
from learnportal.api.routes.students import router as students_router

router = APIRouter()

router.include_router(health_router)
router.include_router(students_router)
router.include_router(staff_router)
