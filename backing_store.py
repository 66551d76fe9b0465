"""
Durable key/value storage for Marginalia.
Each entity collection lives in its own JSON file under the data directory.
Timestamps are written as ISO-8601 strings and turned back into datetime
objects on every read.
"""

import json
import os
from dataclasses import asdict, fields, is_dataclass
from datetime import datetime
from typing import Any, List, Literal, Type, TypeVar, Union, get_args, get_origin, get_type_hints

T = TypeVar("T")

BOOKS_KEY = "books"
NOTES_KEY = "notes"
FOLDERS_KEY = "folders"
COLLECTIONS_KEY = "collections"
SAVED_FILTERS_KEY = "saved_filters"
REVIEW_SESSIONS_KEY = "review_sessions"
ACTIVITY_KEY = "activity_dates"
GOALS_KEY = "reading_goals"


def _encode_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(data: Any) -> str:
    """Serialize plain data (dicts from serialize()) to pretty JSON."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=_encode_default)


def serialize(entity: Any) -> dict:
    """Convert a dataclass entity to a JSON-ready dict (datetimes as ISO strings)."""
    return json.loads(dumps(asdict(entity)))


def _is_optional(hint: Any) -> bool:
    return get_origin(hint) is Union and type(None) in get_args(hint)


def _unwrap_optional(hint: Any) -> Any:
    if get_origin(hint) is Union:
        args = [a for a in get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _parse_datetime(value: Any) -> datetime:
    """ISO-8601 string to a naive local datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Expected an ISO-8601 string, got {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _rehydrate_value(hint: Any, value: Any) -> Any:
    if value is None:
        if _is_optional(hint):
            return None
        raise ValueError(f"Missing value for {hint}")
    hint = _unwrap_optional(hint)
    origin = get_origin(hint)

    if hint is datetime:
        return _parse_datetime(value)
    if isinstance(hint, type) and is_dataclass(hint):
        return rehydrate(hint, value)
    if origin is Literal:
        if value not in get_args(hint):
            raise ValueError(f"Expected one of {get_args(hint)}, got {value!r}")
        return value
    if origin is list:
        if not isinstance(value, list):
            raise ValueError(f"Expected a list, got {value!r}")
        (item_hint,) = get_args(hint) or (Any,)
        return [_rehydrate_value(item_hint, item) for item in value]
    if hint is bool:
        if not isinstance(value, bool):
            raise ValueError(f"Expected true/false, got {value!r}")
        return value
    if hint is int:
        # bool is an int subclass but never a valid count
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Expected an integer, got {value!r}")
        return value
    if hint is str:
        if not isinstance(value, str):
            raise ValueError(f"Expected a string, got {value!r}")
        return value
    return value


def rehydrate(cls: Type[T], raw: Any) -> T:
    """
    Build a dataclass instance from its stored dict.

    Fields annotated as datetime (or Optional[datetime]) are parsed from
    ISO strings into naive local time, and nested dataclasses are rebuilt.
    Strings, ints, bools, lists and Literal choices must match their
    annotation; None is only accepted for Optional fields. Keys the class
    does not know about are ignored. Raises TypeError/ValueError on bad input.
    """
    if not isinstance(raw, dict):
        raise TypeError(f"Expected an object for {cls.__name__}, got {type(raw).__name__}")
    hints = get_type_hints(cls)
    kwargs = {
        f.name: _rehydrate_value(hints[f.name], raw[f.name])
        for f in fields(cls)
        if f.name in raw
    }
    return cls(**kwargs)


class BackingStore:
    """One JSON array per collection key, stored as <data_dir>/<key>.json."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir

    def _ensure_dir(self):
        if not os.path.exists(self.data_dir):
            os.makedirs(self.data_dir, exist_ok=True)

    def path_for(self, key: str) -> str:
        return os.path.join(self.data_dir, f"{key}.json")

    def get(self, key: str) -> list:
        """Read a raw collection. Missing or corrupt data reads as empty."""
        path = self.path_for(key)
        if not os.path.exists(path):
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Error loading {key}: {e}")
            return []
        if not isinstance(raw, list):
            print(f"Error loading {key}: expected a list, got {type(raw).__name__}")
            return []
        return raw

    def set(self, key: str, items: list) -> None:
        """Persist a raw collection (atomic write)."""
        self._ensure_dir()
        path = self.path_for(key)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(dumps(items))
            os.replace(tmp_path, path)
        except (OSError, TypeError) as e:
            print(f"Error saving {key}: {e}")
            raise

    def load_collection(self, key: str, cls: Type[T]) -> List[T]:
        """Read and rehydrate a collection of entities, in stored order."""
        raw = self.get(key)
        try:
            return [rehydrate(cls, item) for item in raw]
        except (TypeError, ValueError) as e:
            print(f"Error loading {key}: {e}")
            return []

    def save_collection(self, key: str, entities: list) -> None:
        self.set(key, [asdict(e) for e in entities])
