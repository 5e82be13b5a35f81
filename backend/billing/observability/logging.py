"""Structured logging helper for billing operations."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("billing")


def log_billing_event(*, message: str, request_id: Optional[str] = None, user_id: Optional[str] = None,
                      subscription_id: Optional[str] = None, actor: Optional[str] = None,
                      extra: Optional[Dict[str, Any]] = None, level: int = logging.INFO) -> None:
    payload: Dict[str, Any] = {"message": message}
    if request_id:
        payload["request_id"] = request_id
    if user_id:
        payload["user_id"] = str(user_id)
    if subscription_id:
        payload["subscription_id"] = str(subscription_id)
    if actor:
        payload["actor"] = actor
    if extra:
        payload.update(extra)
    logger.log(level, payload)
