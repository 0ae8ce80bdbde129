"""
Structured logging configuration for the WOPI broker.
"""

import logging
import sys
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from .config import settings


def configure_structured_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: str = "wopi-broker"
) -> structlog.BoundLogger:
    """Configure structured logging with context."""

    # Configure timestamp
    def add_timestamp(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
        return event_dict

    # Add service context
    def add_service_context(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["service"] = service_name
        event_dict["environment"] = event_dict.get("environment", "development")
        return event_dict

    processors = [
        add_timestamp,
        add_service_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    return structlog.get_logger()


class WOPILogger:
    """WOPI-specific logger with predefined contexts."""

    def __init__(self, logger: structlog.BoundLogger):
        self.logger = logger

    def bind_request(self, request_id: str, method: str, path: str):
        """Bind HTTP request context."""
        return self.logger.bind(
            request_id=request_id,
            http_method=method,
            http_path=path
        )

    def log_token_generated(
        self,
        token: str,
        file_id: str,
        token_type: str,
        editor_uid: Optional[str],
        can_write: bool
    ):
        """Log token generation event."""
        self.logger.info(
            "wopi.token.generated",
            token_id=_token_prefix(token),
            file_id=file_id,
            token_type=token_type,
            editor_uid=editor_uid,
            can_write=can_write,
            event_type="security"
        )

    def log_token_upgraded(
        self,
        token: str,
        token_type: str,
        remote_server: Optional[str]
    ):
        """Log federation upgrade event."""
        self.logger.info(
            "wopi.token.upgraded",
            token_id=_token_prefix(token),
            token_type=token_type,
            remote_server=remote_server,
            event_type="security"
        )

    def log_credentials_provided(self, token: str, login_uid: str):
        """Log session credential creation or refresh."""
        self.logger.info(
            "wopi.credentials.provided",
            token_id=_token_prefix(token),
            login_uid=login_uid,
            event_type="security"
        )

    def log_credentials_skipped(
        self,
        token: str,
        reason: str,
        context: Dict[str, Any] = None
    ):
        """Log that no session credential was provided for a token."""
        self.logger.error(
            "wopi.credentials.skipped",
            token_id=_token_prefix(token),
            reason=reason,
            context=context or {},
            event_type="security"
        )

    def log_discovery_fetched(self, url: str, size_bytes: int, timeout: float):
        """Log a discovery document fetch."""
        self.logger.info(
            "wopi.discovery.fetched",
            url=url,
            size_bytes=size_bytes,
            timeout=timeout,
            event_type="network"
        )

    def log_cleanup(self, expired_tokens: int, invalidated: int, failures: int):
        """Log one cleanup sweep."""
        self.logger.info(
            "wopi.cleanup.finished",
            expired_tokens=expired_tokens,
            invalidated_credentials=invalidated,
            failures=failures,
            event_type="maintenance"
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        context: Dict[str, Any] = None
    ):
        """Log error event."""
        self.logger.error(
            "wopi.error",
            error_type=error_type,
            error_message=error_message,
            context=context or {},
            event_type="error"
        )


def _token_prefix(token: Optional[str]) -> Optional[str]:
    if not token:
        return token
    return token[:8] + "..."


# Create global logger instance
_structured_logger = configure_structured_logging(
    log_level=settings.log_level,
    json_logs=settings.json_logs,
    service_name=settings.service_name
)
wopi_logger = WOPILogger(_structured_logger)


class LoggingMiddleware:
    """Middleware for structured request/response logging."""

    def __init__(self, app):
        self.app = app
        self.logger = wopi_logger

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        start_time = datetime.utcnow()
        bound = self.logger.bind_request(
            request_id=request_id,
            method=scope["method"],
            path=scope["path"]
        )
        scope.setdefault("state", {})["request_id"] = request_id
        bound.info("request.started")

        status_code = None

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
            duration_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
            bound.info(
                "request.completed",
                status_code=status_code,
                duration_ms=duration_ms
            )
        except Exception as e:
            duration_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
            bound.error(
                "request.failed",
                error=str(e),
                duration_ms=duration_ms
            )
            raise
