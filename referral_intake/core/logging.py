from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from referral_intake.core.config import settings

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    level_name = (log_level or settings.log_level).upper()
    use_json = settings.log_json if json_logs is None else json_logs

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))
    # httpx logs full request URLs (SAS tokens included) at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
