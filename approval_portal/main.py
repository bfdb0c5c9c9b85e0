"""
Main FastAPI Application Entry Point
Approval Portal: payment and ERP request workflows
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import time

from approval_portal.config.settings import settings
from approval_portal.database.registry import create_tables
from approval_portal.utils.exceptions import (
    WorkflowError,
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
    ConflictError,
    RequestNotFoundError,
)
from approval_portal.utils.logger import setup_logger
from approval_portal.middleware.logging_middleware import LoggingMiddleware

# Import routes
from approval_portal.routes import requests, admin, notification

logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for application startup and shutdown
    """
    logger.info("Starting Approval Portal...")

    try:
        create_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {str(e)}")

    logger.info("Application started successfully")

    yield

    logger.info("Shutting down Approval Portal...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Multi-stage approval workflows for payment and ERP requests",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LoggingMiddleware)


# Workflow error -> HTTP status
WORKFLOW_ERROR_STATUS = {
    InvalidStateError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RequestNotFoundError: status.HTTP_404_NOT_FOUND,
}


@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError):
    """Handle typed workflow failures"""
    status_code = WORKFLOW_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    content = {
        "success": False,
        "code": exc.code,
        "message": exc.message,
    }
    if isinstance(exc, ValidationError):
        content["fields"] = exc.fields
    if isinstance(exc, PermissionDeniedError) and exc.required_permission:
        content["required_permission"] = exc.required_permission
    if isinstance(exc, ConflictError):
        content["retryable"] = True

    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request body validation errors"""
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "message": "Validation error",
            "errors": [
                {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                for err in exc.errors()
            ]
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": "Internal server error",
            "detail": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": time.time()
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "message": "Welcome to the Approval Portal",
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "health": "/health"
    }


# Include routers
app.include_router(requests.router, prefix="/api/requests", tags=["Requests"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(notification.router, prefix="/api/notifications", tags=["Notifications"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "approval_portal.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
