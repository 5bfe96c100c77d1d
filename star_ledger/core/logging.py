from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from star_ledger.core.config import settings

OPTIONAL_FIELDS = (
    "request_id",
    "child_id",
    "operation",
    "amount",
    "item_id",
    "reward_id",
    "submission_id",
    "redemption_id",
    "transaction_id",
    "attempt",
    "backend",
    "reason",
    "route",
    "method",
    "status_code",
    "execution_time_ms",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "star-ledger",
            "environment": settings.app_env,
        }

        for field in OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_json_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
