from .admin import router as admin_router
from .bundles import router as bundles_router
from .courses import router as courses_router
from .payments import router as payments_router
from .users import router as users_router

routes = [
    admin_router,
    users_router,
    courses_router,
    bundles_router,
    payments_router,
]
