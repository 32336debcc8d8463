import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sekolah_rbac.auth.audit import AuditTrail
from sekolah_rbac.auth.custom_roles import CustomRoleStore
from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.auth.route_guard import DEFAULT_ROUTES, RouteGuard
from sekolah_rbac.config import Settings, settings
from sekolah_rbac.middleware.exceptions import register_exception_handlers
from sekolah_rbac.routers import access, audit, health, roles
from sekolah_rbac.storage.blobs import BlobStorage, build_storage

logger = logging.getLogger("sekolah_rbac.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"RBAC service starting (storage={app.state.settings.storage_backend}, "
        f"routes={len(app.state.route_guard.routes())})"
    )
    yield
    if not app.state.engine.audit.persist():
        logger.warning("Audit trail could not be persisted on shutdown")
    dispose = getattr(app.state.storage, "dispose", None)
    if dispose is not None:
        dispose()
    logger.info("RBAC service stopped")


def create_app(app_settings: Settings = settings, storage: BlobStorage | None = None) -> FastAPI:
    """Build the API with its own engine, role store and route guard.

    Services are created here rather than in the lifespan so that
    transports which skip lifespan events still see a ready app.
    """
    app = FastAPI(
        title="Sekolah RBAC",
        description="Role-based access control and policy engine for the school portal",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ── Services ─────────────────────────────────────────────
    storage = storage if storage is not None else build_storage(app_settings)
    role_store = CustomRoleStore(storage, key_prefix=app_settings.storage_key_prefix)
    audit_trail = AuditTrail(
        app_settings.audit_max_entries,
        storage=storage,
        storage_key=f"{app_settings.storage_key_prefix}:audit_logs",
    )
    engine = PermissionEngine(audit=audit_trail, custom_roles=role_store)
    route_guard = RouteGuard(
        engine,
        DEFAULT_ROUTES if app_settings.register_default_routes else (),
    )

    app.state.settings = app_settings
    app.state.storage = storage
    app.state.role_store = role_store
    app.state.engine = engine
    app.state.route_guard = route_guard

    # ── Exception Handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── Middleware ───────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(access.router, prefix="/api/access", tags=["access"])
    app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
    app.include_router(audit.router, prefix="/api/audit", tags=["audit"])

    return app


app = create_app()
