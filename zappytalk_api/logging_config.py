"""Logging configuration for the ZappyTalk gateway."""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once at startup."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def get_logger(name: str) -> logging.Logger:
    """Get a named logger (use the zappytalk.* namespace)."""
    return logging.getLogger(name)


_auth_logger = get_logger("zappytalk.auth")
_dispatch_logger = get_logger("zappytalk.dispatch")


def log_auth_event(event: str, *, path: str, reason: str | None = None, subject_id: str | None = None) -> None:
    """Log an authentication outcome. Reasons stay in the server log only."""
    parts = [f"AUTH {event}", f"path={path}"]
    if subject_id:
        parts.append(f"subject={subject_id}")
    if reason:
        parts.append(f"reason={reason}")
    line = " | ".join(parts)
    if event == "rejected":
        _auth_logger.warning(line)
    else:
        _auth_logger.info(line)


def log_dispatch_event(
    event: str,
    *,
    room: str,
    agent_name: str | None = None,
    identity: str | None = None,
    error: Exception | None = None,
) -> None:
    """Log one line per dispatch step outcome."""
    line = f"DISPATCH {event} | room={room} agent={agent_name} identity={identity}"
    if error is not None:
        _dispatch_logger.error(f"{line} | error={type(error).__name__}: {error}")
    else:
        _dispatch_logger.info(line)
