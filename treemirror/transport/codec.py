"""Compression of deltas for the wire.

A single general-purpose scheme: compact JSON compressed with zlib. Other
schemes can be swapped in behind the same encode/decode pair.
"""

import json
import zlib

from pydantic import ValidationError

from ..exceptions import CodecError
from ..model import Delta
from .messages import DeltaData

CONTENT_TYPE = "application/x-treemirror-delta+zlib"


class DeltaCodec:
    """Encodes deltas to compressed bytes and back."""

    content_type = CONTENT_TYPE

    def __init__(self, level: int = 1):
        """Initialize the codec.

        Args:
            level: zlib compression level (1 is fastest, 9 smallest).
        """
        if not 0 <= level <= 9:
            raise ValueError(f"Compression level must be 0-9, got {level}")
        self.level = level

    def encode(self, delta: Delta) -> bytes:
        raw = json.dumps(delta.to_dict(), separators=(",", ":")).encode("utf-8")
        return zlib.compress(raw, self.level)

    def decode(self, payload: bytes) -> Delta:
        try:
            raw = zlib.decompress(payload)
            data = json.loads(raw)
        except (zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CodecError(f"Could not decode delta payload: {e}") from e

        try:
            return DeltaData.model_validate(data).to_delta()
        except ValidationError as e:
            raise CodecError(f"Decoded payload is not a delta: {e.error_count()} error(s)") from e

    @staticmethod
    def ratio(delta: Delta, payload: bytes) -> float:
        """Compressed size as a fraction of the uncompressed JSON size."""
        raw_size = len(json.dumps(delta.to_dict(), separators=(",", ":")))
        return len(payload) / raw_size if raw_size else 1.0
