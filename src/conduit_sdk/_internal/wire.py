"""Binary feed frame format for event delivery."""

import struct

import msgpack
import zstandard as zstd

from ..errors import FrameError


# "CD" little-endian
FRAME_MAGIC = 0x4443
FRAME_VERSION = 1
FLAG_ZSTD = 0x01

# [magic:u16][version:u8][flags:u8][raw_len:u32]
_HEADER = struct.Struct("<HBBI")

# Payloads at or above this size are compressed; an activity stats event
# carries 4 x 288 buckets and is always over it.
COMPRESS_THRESHOLD = 512

# Upper bound on a decoded payload, well above any real event
MAX_PAYLOAD_SIZE = 4 * 1024 * 1024


def pack_event_frame(event: dict, compress: bool | None = None) -> bytes:
    """
    Pack an event dict into a binary frame.

    Wire format: [magic:u16][version:u8][flags:u8][raw_len:u32][payload]
    Payload is msgpack, zstd-compressed when flags & FLAG_ZSTD.
    raw_len is always the uncompressed msgpack length.

    Args:
        event: Event in dict form (ConduitEvent.to_dict())
        compress: Force compression on/off. None picks by payload size.
    """
    raw = msgpack.packb(event, use_bin_type=True)
    if compress is None:
        compress = len(raw) >= COMPRESS_THRESHOLD

    flags = 0
    payload = raw
    if compress:
        payload = zstd.ZstdCompressor(level=3).compress(raw)
        flags |= FLAG_ZSTD

    return _HEADER.pack(FRAME_MAGIC, FRAME_VERSION, flags, len(raw)) + payload


def unpack_event_frame(data: bytes) -> dict:
    """
    Unpack a binary frame produced by pack_event_frame().

    Raises:
        FrameError: On short input, wrong magic/version, or a payload that
            does not decode to the declared length.
    """
    if len(data) < _HEADER.size:
        raise FrameError(f"Frame too short: {len(data)} bytes")

    magic, version, flags, raw_len = _HEADER.unpack_from(data, 0)
    if magic != FRAME_MAGIC:
        raise FrameError(f"Bad frame magic: {magic:#06x}")
    if version != FRAME_VERSION:
        raise FrameError(f"Unsupported frame version: {version}")
    if raw_len > MAX_PAYLOAD_SIZE:
        raise FrameError(f"Frame payload too large: {raw_len} bytes")

    payload = data[_HEADER.size :]
    if flags & FLAG_ZSTD:
        try:
            payload = zstd.ZstdDecompressor().decompress(payload, max_output_size=raw_len)
        except zstd.ZstdError as e:
            raise FrameError(f"Corrupt compressed payload: {e}") from e

    if len(payload) != raw_len:
        raise FrameError(f"Payload length mismatch: header={raw_len} actual={len(payload)}")

    try:
        event = msgpack.unpackb(payload, raw=False)
    except (msgpack.UnpackException, ValueError) as e:
        raise FrameError(f"Corrupt msgpack payload: {e}") from e

    if not isinstance(event, dict):
        raise FrameError("Frame payload is not a map")
    return event
