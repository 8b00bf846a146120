"""Kubernetes Event emission for NebariApp phase outcomes."""

import logging
from typing import Any

import kopf

from nebari_operator import constants

logger = logging.getLogger(__name__)


def emit_event(body: dict[str, Any], event_type: str, reason: str, message: str) -> None:
    """
    Post an Event attached to a NebariApp through kopf's event poster.

    Args:
        body: NebariApp body (apiVersion, kind and metadata are used)
        event_type: "Normal" or "Warning"
        reason: CamelCase event reason
        message: Human-readable message
    """
    logger.debug(f"Event {event_type}/{reason}: {message}")
    kopf.event(body, type=event_type, reason=reason, message=message)


def normal(body: dict[str, Any], reason: str, message: str) -> None:
    emit_event(body, constants.EVENT_TYPE_NORMAL, reason, message)


def warning(body: dict[str, Any], reason: str, message: str) -> None:
    emit_event(body, constants.EVENT_TYPE_WARNING, reason, message)
