"""
Logging Middleware
Logs all HTTP requests and responses with the calling user
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from approval_portal.utils.logger import setup_logger

logger = setup_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses"""

    async def dispatch(self, request: Request, call_next):
        """Process request and log details"""
        start_time = time.time()
        user_id = request.headers.get("X-User-Id", "anonymous")

        logger.info(
            f"Request: {request.method} {request.url.path} | "
            f"User: {user_id} | "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
        except Exception:
            duration = time.time() - start_time
            logger.exception(
                f"Error: {request.method} {request.url.path} | "
                f"Duration: {duration:.3f}s"
            )
            raise

        duration = time.time() - start_time
        logger.info(
            f"Response: {request.method} {request.url.path} | "
            f"Status: {response.status_code} | "
            f"Duration: {duration:.3f}s"
        )
        return response
