"""
EduTrack Online Tests - Main FastAPI Application

Test authoring, deployment, auto-graded attempts and analytics.
Version: 1.0
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.config.settings import settings
from app.routes.admin_test_routes import create_admin_test_routes
from app.routes.analytics_routes import create_analytics_routes
from app.routes.student_test_routes import create_student_test_routes

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes; the attempt index also guards against duplicate attempts."""
    try:
        # Tests
        await db.online_tests.create_index("test_id", unique=True)
        await db.online_tests.create_index("created_by")
        await db.online_tests.create_index("deployment.batches")

        # Attempts
        await db.test_attempts.create_index([("test_id", 1), ("student_phone", 1)], unique=True)
        await db.test_attempts.create_index([("test_id", 1), ("status", 1)])
        await db.test_attempts.create_index("student_phone")

        # Roster
        await db.batch_students.create_index("phone_number", unique=True)
        await db.batch_students.create_index("courses")

        # Sessions
        await db.user_sessions.create_index("session_token")

    except Exception as e:
        logger.warning(f"Index creation warning: {e}")
        # Don't fail startup if indexes already exist


def setup_routes(app: FastAPI, db: AsyncIOMotorDatabase):
    """Setup all API routes."""
    app.include_router(create_admin_test_routes(db))
    app.include_router(create_student_test_routes(db))
    app.include_router(create_analytics_routes(db))
    logger.info("✅ Routes registered")


def create_app(database: Optional[AsyncIOMotorDatabase] = None) -> FastAPI:
    """
    Build the application.

    With ``database`` given (tests), routes are bound to it immediately and
    no connection is opened; otherwise MongoDB is connected on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """FastAPI lifespan context manager for startup/shutdown."""
        client = None

        # STARTUP
        if app.state.db is None:
            logger.info("🚀 EduTrack Online Tests Starting Up...")
            try:
                settings.validate()
                logger.info("✅ Settings validated")

                client = AsyncIOMotorClient(
                    settings.MONGODB_URL,
                    maxPoolSize=50,
                    serverSelectionTimeoutMS=5000
                )

                # Test connection
                await client.server_info()
                app.state.db = client[settings.DATABASE_NAME]
                logger.info(f"✅ Connected to MongoDB: {settings.DATABASE_NAME}")

                await create_indexes(app.state.db)
                logger.info("✅ Database indexes created")

                setup_routes(app, app.state.db)
                logger.info("✅ Application startup complete")

            except Exception as e:
                logger.error(f"❌ Startup failed: {e}")
                raise

        yield

        # SHUTDOWN
        if client is not None:
            logger.info("🛑 Shutting down...")
            client.close()
            logger.info("✅ Database connection closed")

    app = FastAPI(
        title="EduTrack Online Tests API",
        description="Online test delivery, auto-grading and analytics",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": VERSION,
            "database": "connected" if app.state.db is not None else "disconnected"
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": "EduTrack Online Tests",
            "version": VERSION,
            "docs": "/docs",
            "health": "/api/health"
        }

    if database is not None:
        setup_routes(app, database)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
