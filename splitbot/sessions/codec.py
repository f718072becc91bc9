from __future__ import annotations

import logging
from typing import Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from .models import SessionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


def encode(session: SessionRecord) -> str:
    return session.model_dump_json()


def decode(adapter: TypeAdapter[T], raw: Optional[str]) -> Optional[T]:
    """Parse a stored value; unreadable values are treated as if nothing was stored."""
    if raw is None:
        return None
    try:
        return adapter.validate_json(raw)
    except ValidationError:
        logger.warning("Discarding undecodable session value: %.200s", raw)
        return None
