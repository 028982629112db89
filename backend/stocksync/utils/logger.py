import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("stocksync")

# Matched case-insensitively, at any nesting depth.
SENSITIVE_KEYS = frozenset({
    "client_secret",
    "access_token",
    "refresh_token",
    "authorization",
    "code",
})


def mask_secret(value: Any) -> str:
    """Keep the auth scheme and the ends of a credential, hide the rest."""
    text = str(value)
    scheme = ""
    if " " in text:
        scheme, text = text.split(" ", 1)
        scheme += " "
    if len(text) > 8:
        return f"{scheme}{text[:4]}...{text[-4:]}"
    return f"{scheme}***"


def sanitize(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: mask_secret(value) if str(key).lower() in SENSITIVE_KEYS and value is not None else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize(value) for value in data]
    return data


class PlatformConnectionLogger:
    """Ring buffer of recent platform API events, credentials masked.

    Backs the /platform/logs diagnostics endpoint; every event is also
    written to the package logger.
    """

    def __init__(self, max_logs: int = 1000):
        self.logs = deque(maxlen=max_logs)

    def log_event(
        self,
        event_type: str,
        description: str,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        status: str = "info",
        error: Optional[str] = None
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "description": description,
            "request_data": sanitize(request_data) if request_data else None,
            "response_data": sanitize(response_data) if response_data else None,
            "status": status,
            "error": error
        }
        self.logs.append(log_entry)

        if error:
            logger.error(f"[{event_type}] {description} - Error: {error}")
        else:
            logger.info(f"[{event_type}] {description}")
        return log_entry

    def get_logs(
        self,
        limit: Optional[int] = None,
        event_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Oldest first; ``limit`` keeps the most recent matches."""
        entries = [
            entry for entry in self.logs
            if (event_type is None or entry["event_type"] == event_type)
            and (status is None or entry["status"] == status)
        ]
        if limit:
            return entries[-limit:]
        return entries

    def clear_logs(self) -> int:
        cleared = len(self.logs)
        self.logs.clear()
        logger.info(f"Cleared {cleared} platform connection log entries")
        return cleared


platform_logger = PlatformConnectionLogger()
