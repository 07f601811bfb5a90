"""
Request/response logging middleware with duration and masking of secrets.

Gateway callbacks carry their signature in the query string, so query
parameters are masked the same way as bodies.
"""
import json
import time
from typing import Any
from urllib.parse import parse_qs

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)

MASK = "***"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one event when a request starts and one when it ends.

    The level of the closing event follows the status code class.
    """

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # compared lowercase
    SENSITIVE_FIELDS = {
        "password", "token", "secret", "api_key", "access_token", "refresh_token",
        "authorization", "hash_secret", "vnp_securehash",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.time() - start_time
            logger.error(
                "request_failed",
                duration=duration,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        self._log_response(response.status_code, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    def _mask(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: MASK if str(k).lower() in self.SENSITIVE_FIELDS else self._mask(v)
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [self._mask(v) for v in data]
        return data

    async def _get_request_info(self, request: Request) -> dict:
        info = {
            "method": request.method,
            "path": request.url.path,
            "query_params": self._mask(dict(request.query_params)),
        }
        if request.path_params:
            info["path_params"] = request.path_params
        if request.method in ["POST", "PUT", "PATCH"] and self._should_log_body(request):
            body = await self._extract_body(request)
            if body is not None:
                info["body"] = body
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false overrides the configured default
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _extract_body(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        text = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            try:
                return self._mask(json.loads(text))
            except ValueError:
                # truncated or invalid JSON
                return {"raw_bytes": len(body)}
        if "application/x-www-form-urlencoded" in content_type:
            parsed = {k: v if len(v) > 1 else v[0] for k, v in parse_qs(text).items()}
            return self._mask(parsed)
        return {"raw_bytes": len(body), "content_type": content_type}

    @staticmethod
    def _log_response(status_code: int, duration: float, request_info: dict) -> None:
        log_data = {"status_code": status_code, "duration": duration, **request_info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
