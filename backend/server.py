"""
Document Control & Approval Subsystem
PostgreSQL Backend
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path
import os
import logging

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Create the main app
app = FastAPI(
    title="Document Control & Approval",
    description="Workflows, approvals, serial numbers, revisions and transmittals - PostgreSQL Backend",
    version="1.0.0"
)

# Health check endpoint at root level (for Kubernetes)
@app.get("/health")
async def root_health_check():
    """Health check endpoint for Kubernetes liveness/readiness probes"""
    return {"status": "healthy", "database": "PostgreSQL"}

# ==================== Document Control Routes ====================
from routes.approvals_routes import approvals_router
from routes.documents_routes import documents_router
from routes.transmittals_routes import transmittals_router
from routes.audit_routes import audit_router

app.include_router(approvals_router)
app.include_router(documents_router)
app.include_router(transmittals_router)
app.include_router(audit_router)

# ==================== CORS Configuration ====================
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Logging Configuration ====================
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ==================== Startup & Shutdown Events ====================
@app.on_event("startup")
async def startup_db_client():
    """Initialize PostgreSQL database and workflow definitions on startup"""
    logger.info("🚀 Starting Document Control service...")

    # Invalid workflow definitions abort startup
    from routes.dependencies import get_workflow_registry
    registry = get_workflow_registry()
    logger.info(f"Workflows registered: {', '.join(registry.domains())}")

    from database import init_postgres_db
    await init_postgres_db()

    logger.info("✅ PostgreSQL database initialized successfully")

@app.on_event("shutdown")
async def shutdown_db_client():
    """Flush pending notifications and close database connections on shutdown"""
    logger.info("🛑 Shutting down...")

    from routes.dependencies import drain_notifications
    await drain_notifications()

    from database import close_postgres_db
    await close_postgres_db()

    logger.info("✅ Database connections closed")
