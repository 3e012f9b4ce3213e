from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from app.core.config import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "routinely-api",
            "environment": settings.app_env,
        }

        optional_fields = (
            "request_id",
            "family_id",
            "profile_id",
            "child_id",
            "routine_id",
            "session_id",
            "task_id",
            "status",
            "reason",
            "points_delta",
            "balance_after",
            "points_awarded",
            "bonus_multiplier",
            "streak_days",
            "duration_seconds",
            "achievement_code",
            "route",
            "method",
            "status_code",
            "execution_time_ms",
        )
        for field in optional_fields:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_json_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)
