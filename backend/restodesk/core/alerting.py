"""Operational alerts for events staff should act on (failed dispatches, courier cancellations)."""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

logger = logging.getLogger("alerts")


class AlertManager:
    """Collects and exposes application alerts."""

    LEVELS = {"info": 0, "warning": 1, "critical": 2}

    def __init__(self, max_buffer: int = 200):
        self.alerts: List[Dict] = []
        self.max_buffer = max_buffer

    def alert(
        self,
        level: str,
        title: str,
        message: str,
        source: str = "system",
        restaurant_id: Optional[int] = None,
        order_id: Optional[int] = None,
    ):
        entry = {
            "level": level,
            "title": title,
            "message": message,
            "source": source,
            "restaurant_id": restaurant_id,
            "order_id": order_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.alerts.append(entry)
        if len(self.alerts) > self.max_buffer:
            self.alerts = self.alerts[-self.max_buffer:]

        log_level = {
            "info": logging.INFO,
            "warning": logging.WARNING,
            "critical": logging.CRITICAL,
        }
        logger.log(log_level.get(level, logging.INFO), f"[{source}] {title}: {message}")

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[str] = None,
        restaurant_id: Optional[int] = None,
    ) -> List[Dict]:
        alerts = self.alerts
        if level:
            min_level = self.LEVELS.get(level, 0)
            alerts = [a for a in alerts if self.LEVELS.get(a["level"], 0) >= min_level]
        if restaurant_id is not None:
            alerts = [a for a in alerts if a["restaurant_id"] == restaurant_id]
        return list(reversed(alerts[-limit:]))

    def clear(self):
        self.alerts = []


alert_manager = AlertManager()
