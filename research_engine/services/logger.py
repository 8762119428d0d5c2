"""Centralized logging using loguru.

Console and daily-rotated file sinks are installed on import. Structured
records (LLM calls, research steps, events) are logged as one line with a
dict payload so the file log can be grepped by tag.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from research_engine.config import settings

LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "httpx",
    "httpcore",
    "openai._base_client",
    "chromadb",
    "sentence_transformers",
    "asyncio",
)

logger.remove()
logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)
logger.add(
    LOG_DIR / "research_engine_{time:YYYY-MM-DD}.log",
    format=FILE_FORMAT,
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(settings.noisy_log_level.upper())


def _emit(tag: str, payload: dict[str, Any], *, warn: bool = False) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    if warn:
        logger.warning(f"{tag}: {record}")
    else:
        logger.info(f"{tag}: {record}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one LLM call with token usage."""
    payload = {
        "model": model,
        "caller": caller,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "status": status,
    }
    if error:
        payload["error"] = error
        logger.error(f"LLM_CALL_FAILED: {payload}")
        return
    _emit("LLM_CALL", payload)


def log_research_step(
    request_id: str,
    step_type: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Log one state of the orchestration graph; errors are warnings."""
    _emit(
        "RESEARCH_STEP",
        {"request_id": request_id, "step_type": step_type, "status": status, "data": data},
        warn=status == "error",
    )


def log_event(event_type: str, message: str, **kwargs) -> None:
    _emit("EVENT", {"event_type": event_type, "message": message, **kwargs})
