"""
Logging setup for the API and worker services.

On Cloud Run (K_SERVICE set) the root logger is handed to google-cloud-logging
so `extra={"json_fields": {...}}` becomes structured payload in Cloud Logging.
Locally a stdout handler prints the same json_fields under the message.
"""

import json
import logging
import os
import sys

# Chatty client libraries, kept at WARNING unless LOG_LEVEL is DEBUG
NOISY_LOGGERS = ("google_adk", "google_genai", "httpx", "urllib3", "asyncio")

_configured_service: str | None = None


class LocalFormatter(logging.Formatter):
    """Formatter that renders json_fields passed through `extra`."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        json_fields = getattr(record, "json_fields", None)
        if json_fields:
            message += "\n" + json.dumps(json_fields, indent=2, default=str)

        return message


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(service_name: str = "trackproof", level: int | str | None = None):
    """
    Configure root logging once per process.

    Args:
        service_name: Service label (shown locally, logged on Cloud Run)
        level: Log level or level name; defaults to LOG_LEVEL, then INFO
    """
    global _configured_service

    if _configured_service is not None:
        return

    resolved = _resolve_level(level)

    if os.getenv("K_SERVICE"):
        _setup_cloud_logging(service_name, resolved)
    else:
        _setup_local_logging(service_name, resolved)

    if resolved > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _configured_service = service_name


def _setup_cloud_logging(service_name: str, level: int):
    try:
        import google.cloud.logging

        client = google.cloud.logging.Client()
        client.setup_logging(log_level=level)
        logging.info("Cloud Logging configured for service: %s", service_name)
    except Exception as e:
        # Credentials or API unavailable; still log to stdout
        _setup_local_logging(service_name, level)
        logging.warning("Cloud Logging unavailable, logging to stdout: %s", e)


def _setup_local_logging(service_name: str, level: int):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        LocalFormatter(
            f"%(asctime)s [{service_name}] %(name)s %(levelname)s: %(message)s"
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
