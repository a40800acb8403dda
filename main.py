import logging
import subprocess
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path

import click
import uvicorn
from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from app.core.config import settings
from app.core.database import Base, SessionLocal, engine
from app.core.handlers import register_exception_handlers
from app.core.limiter import limiter
from app.models import *
from app.routers import routes
from app.services.course_enrollment import EnrollmentService

BASE_DIR = Path(__file__).parent
LOG_FILE = BASE_DIR / settings.log_file

# Third-party loggers that are too chatty below WARNING
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "botocore", "boto3", "urllib3", "stripe")


# ==================== Logging ====================


def configure_logging() -> logging.Logger:
    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

    level_name = "DEBUG" if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(LOG_FILE, mode="a", encoding="utf-8"),
        ],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(__name__)


logger = configure_logging()


# ==================== Application ====================


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")

    Base.metadata.create_all(bind=engine)
    logger.info("✓ Database schema ready")

    if not settings.stripe_secret_key:
        logger.warning("⚠️ Stripe is not configured - purchases complete in development mode")
    if not settings.aws_s3_bucket:
        logger.warning("⚠️ S3 bucket is not configured - uploads will fail")

    yield

    engine.dispose()
    logger.info(f"👋 {settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    description=settings.app_description,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
register_exception_handlers(app)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def tag_response(request: Request, call_next):
    """Echo (or mint) a request id and report how long the request took."""
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or f"{time.time():.6f}"
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{time.perf_counter() - started:.4f}"
    return response


@app.get("/")
async def root():
    return {
        "app_name": settings.app_name,
        "version": settings.app_version,
        "status": "healthy",
        "environment": "production" if settings.production else "development",
    }


@app.get("/health")
@limiter.limit("10/minute")
async def health_check(request: Request):
    """Database reachability plus which external integrations are configured."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        logger.error(f"❌ Health check could not reach the database: {e}")
        database = "unhealthy"
    finally:
        db.close()

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "timestamp": time.time(),
        "database": database,
        "storage": "configured" if settings.aws_s3_bucket else "not_configured",
        "payments": "configured" if settings.stripe_secret_key else "development_mode",
    }


for router in routes:
    app.include_router(router)


# ==================== CLI ====================


def run_migrations() -> None:
    command.upgrade(Config(str(BASE_DIR / "alembic.ini")), "head")
    logger.info("✓ Migrations applied")


def gunicorn_command(host: str, port: int, workers: int) -> list:
    return [
        "gunicorn",
        "main:app",
        "--worker-class", "uvicorn.workers.UvicornWorker",
        "--workers", str(workers),
        "--bind", f"{host}:{port}",
        "--access-logfile", "-",
        "--error-logfile", "-",
        "--timeout", "120",
        "--graceful-timeout", "30",
    ]


@click.group()
def cli():
    """Course platform management commands."""


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True)
@click.option("--reload", is_flag=True, help="Restart on code changes")
def dev(host: str, port: int, reload: bool):
    """Run the development server."""
    logger.info(f"Development server on {host}:{port} (reload={reload})")
    uvicorn.run("main:app", host=host, port=port, reload=reload, log_level="debug")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True)
@click.option("--workers", default=4, show_default=True)
def prod(host: str, port: int, workers: int):
    """Apply migrations, then serve with Gunicorn."""
    try:
        run_migrations()
    except Exception as e:
        logger.error(f"❌ Migration failed: {e}", exc_info=True)
        raise click.ClickException(f"Migration failed: {e}")

    logger.info(f"Production server on {host}:{port} with {workers} workers")
    try:
        subprocess.run(gunicorn_command(host, port, workers), check=True)
    except FileNotFoundError:
        raise click.ClickException("Gunicorn is not installed")
    except subprocess.CalledProcessError as e:
        raise click.ClickException(f"Gunicorn exited with status {e.returncode}")


@cli.command()
def migrate():
    """Apply pending database migrations."""
    try:
        run_migrations()
    except Exception as e:
        raise click.ClickException(f"Migration failed: {e}")
    click.echo("Database is up to date")


@cli.command()
def info():
    """Show the effective configuration."""
    click.echo(f"Application: {settings.app_name} v{settings.app_version}")
    click.echo(f"Debug: {settings.debug}")
    click.echo(f"S3 bucket: {settings.aws_s3_bucket or '(not configured)'}")
    click.echo(f"Payments: {'stripe' if settings.stripe_secret_key else 'development mode'}")
    click.echo(f"Log file: {LOG_FILE.absolute()}")


@cli.command("reconcile-entitlements")
@click.option("--apply", is_flag=True, help="Add the missing purchased rows")
def reconcile_entitlements(apply: bool):
    """Report (and optionally repair) enrollments missing from purchased lists."""
    db = SessionLocal()
    try:
        report = EnrollmentService(db).reconcile_entitlements(apply=apply)
    finally:
        db.close()

    click.echo(f"Missing purchased courses: {len(report['missing_purchased_courses'])}")
    for row in report["missing_purchased_courses"]:
        click.echo(f"  - user {row['user_id']} -> course {row['course_id']}")
    click.echo(f"Missing purchased bundles: {len(report['missing_purchased_bundles'])}")
    for row in report["missing_purchased_bundles"]:
        click.echo(f"  - user {row['user_id']} -> bundle {row['bundle_id']}")
    click.echo(
        f"Purchased without enrollment (left untouched): {len(report['purchased_without_enrollment'])}"
    )
    click.echo("Applied" if report["applied"] else "Dry run - nothing changed")


if __name__ == "__main__":
    cli()
