from __future__ import annotations

import hashlib
import uuid


def canonical_key(course_id: str, lesson_id: str, index: int) -> str:
    return "|".join([course_id, lesson_id, str(int(index))])


def resolve_id(course_id: str, lesson_id: str, index: int) -> uuid.UUID:
    """
    Stable UUID for a practice item, derived only from its canonical ids.
    Same inputs give the same value on every run and every machine.
    """
    digest = hashlib.sha256(canonical_key(course_id, lesson_id, index).encode("utf-8")).digest()
    raw = bytearray(digest[:16])
    # version 4 + RFC 4122 variant bits
    raw[6] = (raw[6] & 0x0F) | 0x40
    raw[8] = (raw[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(raw))
