"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI

from token_registry.config import LOG_LEVEL
from token_registry.database import engine, Base
from token_registry.api.routes import router
# Import models to register them with SQLAlchemy Base
from token_registry.models.storage import KeyValueEntry
from token_registry.models.audit import AuditEvent

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="Token Registry",
    description="Owner-scoped tokens with versioned, indexed and audited metadata.",
    version="0.1.0"
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Tokens"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Token Registry"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
