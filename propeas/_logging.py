import hashlib
import logging
from typing import Any

# Create the library logger
logger = logging.getLogger("propeas")

# Add NullHandler to prevent "No handlers could be found" warnings
# if the application doesn't configure logging.
logger.addHandler(logging.NullHandler())

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int | str = logging.INFO, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Attaches a stream handler to the library logger.

    Applications that already configure the root logger don't need this;
    it exists for scripts and notebooks driving the dashboard directly.
    Calling it twice does not add a second handler.
    """
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    return logger


def redact_key(key: dict[str, Any] | str | None) -> str:
    """
    Redacts sensitive key information for logging.
    hashes the values to allow correlation without revealing PII
    (client emails, phone numbers and identity ids end up in keys and cursors).
    """
    if key is None:
        return "<none>"
    try:
        if isinstance(key, dict):
            redacted = {}
            for k, v in key.items():
                val_str = str(v).encode("utf-8")
                redacted[k] = hashlib.sha256(val_str).hexdigest()[:8]
            return str(redacted)
        else:
            # Hash single value keys
            return hashlib.sha256(str(key).encode("utf-8")).hexdigest()[:8]
    except Exception:
        return "<redaction_failed>"
