"""
Gallery record models and the sanitizer every write path goes through.

Students and artworks are flat documents. Each model includes:
  - An `id` field holding the Firestore document ID (or a locally
    generated one while the record only exists in the local store)
  - A `to_dict()` instance method producing the persisted/wire layout
  - A `remote_fields()` method producing the Firestore payload
  - A `from_dict(data, doc_id)` classmethod that sanitizes loosely shaped input

`createdAt` is always kept as milliseconds since the epoch, whatever shape
it arrived in.
"""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

STUDENT = 'students'
ARTWORK = 'artworks'
COLLECTIONS = (STUDENT, ARTWORK)

DEFAULT_ARTWORK_TITLE = 'Artwork'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_millis() -> int:
    return int(time.time() * 1000)


def _as_millis(number, scale=1) -> Optional[int]:
    """number * scale as an int, or None unless both are finite."""
    if isinstance(number, bool) or not isinstance(number, (int, float)):
        return None
    try:
        scaled = float(number) * scale
    except OverflowError:
        return None
    return int(scaled) if math.isfinite(scaled) else None


def _seconds_field(value):
    if isinstance(value, Mapping):
        return value.get('seconds')
    return getattr(value, 'seconds', None)


def to_millis(value) -> int:
    """Canonicalize a createdAt value to epoch milliseconds.

    Accepts numbers, numeric strings, datetimes (Firestore hands back
    DatetimeWithNanoseconds), objects with a millisecond accessor and
    objects or mappings with a ``seconds`` field. Empty, non-finite or
    unrecognized values resolve to now.
    """
    if not value or isinstance(value, bool):
        return _now_millis()
    if isinstance(value, (int, float)):
        millis = _as_millis(value)
    elif isinstance(value, str):
        try:
            millis = _as_millis(float(value))
        except ValueError:
            millis = None
    elif isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        millis = int(value.timestamp() * 1000)
    else:
        millis = None
        for accessor_name in ('to_millis', 'toMillis', 'ToMilliseconds'):
            accessor = getattr(value, accessor_name, None)
            if callable(accessor):
                millis = _as_millis(accessor())
                break
        else:
            millis = _as_millis(_seconds_field(value), 1000)
    return _now_millis() if millis is None else millis


def millis_to_datetime(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def created_at_value(value) -> int:
    """Sort key for createdAt. Unlike to_millis, unknown shapes sort as 0."""
    if not value or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return _as_millis(value) or 0
    if isinstance(value, datetime):
        return to_millis(value)
    for accessor_name in ('to_millis', 'toMillis'):
        accessor = getattr(value, accessor_name, None)
        if callable(accessor):
            return _as_millis(accessor()) or 0
    return _as_millis(_seconds_field(value), 1000) or 0


def record_id(item) -> Optional[str]:
    """Return the id of a record or of a plain mapping."""
    if item is None:
        return None
    if isinstance(item, Mapping):
        return item.get('id')
    return getattr(item, 'id', None)


def _created_at_of(item):
    if isinstance(item, Mapping):
        return item.get('createdAt')
    return getattr(item, 'created_at', None)


def sort_newest_first(items: Iterable) -> List:
    return sorted(items, key=lambda item: created_at_value(_created_at_of(item)), reverse=True)


def is_embedded_placeholder(url) -> bool:
    """True when the media reference still carries the file inline."""
    return isinstance(url, str) and url.startswith('data:')


def create_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


def _text(value) -> str:
    if value is None:
        return ""
    return str(value)


# ===========================================================================
# Media
# ===========================================================================

class MediaKind(str, Enum):
    IMAGE = 'image'
    VIDEO = 'video'

    @property
    def url_field(self) -> str:
        return 'videoUrl' if self is MediaKind.VIDEO else 'imageUrl'


@dataclass(frozen=True)
class Media:
    """An artwork's media: exactly one URL, tagged with its kind."""
    kind: MediaKind = MediaKind.IMAGE
    url: str = ""

    @property
    def is_placeholder(self) -> bool:
        return is_embedded_placeholder(self.url)

    def with_url(self, url: str) -> Media:
        return Media(kind=self.kind, url=url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mediaType": self.kind.value,
            self.kind.url_field: self.url,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> Media:
        raw_kind = data.get("mediaType")
        try:
            kind = MediaKind(raw_kind)
        except ValueError:
            # Older documents carry no mediaType; a lone videoUrl means video.
            kind = MediaKind.VIDEO if data.get("videoUrl") and not data.get("imageUrl") else MediaKind.IMAGE
        return cls(kind=kind, url=_text(data.get(kind.url_field)))


# ===========================================================================
# 1. Student
# ===========================================================================

@dataclass
class Student:
    id: Optional[str] = None
    name: str = ""
    category: str = ""
    cover_url: str = ""
    created_at: int = field(default_factory=_now_millis)
    local_only: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "coverUrl": self.cover_url,
            "createdAt": self.created_at,
            "localOnly": self.local_only,
        }

    def remote_fields(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "coverUrl": self.cover_url,
            "createdAt": millis_to_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping, doc_id: Optional[str] = None) -> Student:
        return cls(
            id=doc_id or data.get("id"),
            name=_text(data.get("name")),
            category=_text(data.get("category")),
            cover_url=_text(data.get("coverUrl")),
            created_at=to_millis(data.get("createdAt")),
            local_only=bool(data.get("localOnly")),
        )


# ===========================================================================
# 2. Artwork
# ===========================================================================

@dataclass
class Artwork:
    id: Optional[str] = None
    student_id: str = ""
    type: str = ""
    title: str = ""
    description: str = ""
    media: Media = field(default_factory=Media)
    created_at: int = field(default_factory=_now_millis)
    local_only: bool = False

    @property
    def media_type(self) -> str:
        return self.media.kind.value

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "studentId": self.student_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
        }
        data.update(self.media.to_dict())
        data["createdAt"] = self.created_at
        data["localOnly"] = self.local_only
        return data

    def remote_fields(self) -> Dict[str, Any]:
        data = {
            "studentId": self.student_id,
            "type": self.type,
            "title": self.title or DEFAULT_ARTWORK_TITLE,
            "description": self.description,
            "createdAt": millis_to_datetime(self.created_at),
        }
        data.update(self.media.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Mapping, doc_id: Optional[str] = None) -> Artwork:
        return cls(
            id=doc_id or data.get("id"),
            student_id=_text(data.get("studentId")),
            type=_text(data.get("type")),
            title=_text(data.get("title")),
            description=_text(data.get("description")),
            media=Media.from_dict(data),
            created_at=to_millis(data.get("createdAt")),
            local_only=bool(data.get("localOnly")),
        )


# ---------------------------------------------------------------------------
# Sanitizer
# ---------------------------------------------------------------------------

def _as_mapping(raw) -> Mapping:
    if isinstance(raw, (Student, Artwork)):
        return raw.to_dict()
    if isinstance(raw, Mapping):
        return raw
    raise TypeError(f"cannot sanitize {type(raw).__name__} as a gallery record")


def sanitize_student(raw) -> Student:
    return Student.from_dict(_as_mapping(raw))


def sanitize_artwork(raw) -> Artwork:
    return Artwork.from_dict(_as_mapping(raw))


SANITIZERS = {STUDENT: sanitize_student, ARTWORK: sanitize_artwork}


def sanitize(kind: str, raw):
    return SANITIZERS[kind](raw)


def apply_update(kind: str, existing, updates: Mapping):
    """Partial update. The stored id and createdAt always win."""
    current = _as_mapping(existing)
    merged = {**current, **dict(updates)}
    merged["id"] = current.get("id")
    merged["createdAt"] = current.get("createdAt")
    if kind == ARTWORK and "mediaType" in updates:
        # Switching media kind drops the url of the other kind.
        other = MediaKind.IMAGE if updates["mediaType"] == MediaKind.VIDEO.value else MediaKind.VIDEO
        if other.url_field not in updates:
            merged.pop(other.url_field, None)
    return sanitize(kind, merged)
