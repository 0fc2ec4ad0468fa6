from registrar.routes.admin import router as admin_router
from registrar.routes.gpa import router as gpa_router
from registrar.routes.student import router as student_router

__all__ = ["admin_router", "gpa_router", "student_router"]
