"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from loan_monitor.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_cycle(result, duration_ms: float) -> None:
    """Log structured repayment cycle outcome for analysis"""
    logging.getLogger("loan_monitor.cycle").info(
        "Repayment cycle completed",
        extra={
            "cycle_id": result.cycle_id,
            "step": "cycle_complete",
            "dry_run": result.dry_run,
            "outcome": "skipped" if result.skipped_reason else ("success" if result.success else "partial_failure"),
            "actions_planned": result.actions_planned,
            "actions_executed": result.actions_executed,
            "total_fiat_spent": result.total_fiat_spent,
            "error_count": len(result.errors),
            "duration_ms": duration_ms,
        },
    )
