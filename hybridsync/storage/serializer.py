"""Value serialization and content fingerprinting."""

import hashlib
import json
from abc import ABC, abstractmethod
from typing import Any

from .base import MISSING, InvalidValueError


class Serializer(ABC):
    """Abstract base for value codecs."""

    @abstractmethod
    def serialize(self, value: Any) -> str:
        """Encode a value for storage."""
        pass

    @abstractmethod
    def deserialize(self, data: str | bytes) -> Any:
        """Decode a stored value."""
        pass


class JSONSerializer(Serializer):
    """Compact JSON codec.

    Output matches what a browser's JSON.stringify produces for the same
    document, so fingerprints agree across clients.
    """

    def serialize(self, value: Any) -> str:
        if value is MISSING:
            raise InvalidValueError("Cannot serialize a missing value")
        try:
            return json.dumps(
                value,
                ensure_ascii=False,
                separators=(",", ":"),
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise InvalidValueError(f"Value is not JSON-serializable: {e}") from e

    def deserialize(self, data: str | bytes) -> Any:
        return json.loads(data)


def md5_fingerprint(data: str) -> str:
    """Return the upper-case hex MD5 of data, matching object-store etags."""
    return hashlib.md5(data.encode("utf-8")).hexdigest().upper()


def drop_quotes(value: str) -> str:
    """Strip one pair of surrounding double quotes, as found on HTTP etags."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value
