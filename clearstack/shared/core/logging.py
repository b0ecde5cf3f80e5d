import logging
import re
import sys
from typing import Any, cast

import structlog

from clearstack.shared.core.config import get_settings

_EMAIL_REGEX = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
_PHONE_REGEX = re.compile(
    r"(?<!\w)(?:\+?\d{1,3}[\s.-]?)?(?:\(?\d{2,4}\)?[\s.-]?){2,4}\d{2,4}(?!\w)"
)
_PII_FIELDS = {
    "password",
    "token",
    "secret",
    "authorization",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "smtp_password",
    "first_name",
    "last_name",
    "linkedin_id",
}
_PII_SUFFIXES = ("_token", "_secret", "_password", "_key")


def _is_sensitive_key(key: Any) -> bool:
    key_norm = str(key).lower().strip().replace("-", "_")
    if key_norm in _PII_FIELDS:
        return True
    return key_norm.endswith(_PII_SUFFIXES)


def _redact_text(text: Any) -> Any:
    if not isinstance(text, str):
        return text
    text = _EMAIL_REGEX.sub("[EMAIL_REDACTED]", text)

    # Redact only plausible phone numbers (avoid timestamps/UUID fragments).
    def _replace_phone(match: re.Match[str]) -> str:
        candidate = match.group(0)
        digits = re.sub(r"\D", "", candidate)
        looks_like_phone = len(digits) >= 10 and (
            candidate.strip().startswith("+")
            or any(ch in candidate for ch in (" ", "-", ".", "(", ")"))
        )
        return "[PHONE_REDACTED]" if looks_like_phone else candidate

    return _PHONE_REGEX.sub(_replace_phone, text)


def _redact_recursive(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            k: ("[REDACTED]" if _is_sensitive_key(k) else _redact_recursive(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_redact_recursive(item) for item in data]
    if isinstance(data, str):
        return _redact_text(data)
    return data


def pii_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Recursively redact PII and secrets from log events.
    Erasure jobs log user identifiers; emails and names must never reach telemetry.
    """
    redacted = _redact_recursive(event_dict)
    if isinstance(redacted, dict):
        return cast(dict[str, Any], redacted)
    return {}


def setup_logging() -> None:
    settings = get_settings()

    base_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        pii_redactor,
    ]

    if settings.DEBUG:
        renderer: Any = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]
        min_level = logging.INFO

    structlog.configure(
        processors=cast(Any, processors),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging (uvicorn, apscheduler, sqlalchemy) to stderr too.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )
