"""Historical heart-rate record and metadata decoding.

HistoricalData payloads are a run of fixed 28-byte records::

    offset  size  field
    0       4     (unused)
    4       4     unix timestamp, u32 LE
    8       6     (unused)
    14      1     heart rate, bpm
    15      1     declared RR interval count
    16      8     4 x RR interval, u16 LE milliseconds (0 = empty slot)
    24      4     activity id, u32 LE

Metadata payloads start with ``unix`` (u32 LE at 0) and carry the pagination
value ``data`` as u32 LE at offset 10.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Final

from strap_controller.protocol.exceptions import PacketDecodeError
from strap_controller.protocol.packet_types import MetadataType

logger = logging.getLogger(__name__)

HISTORY_RECORD_SIZE: Final[int] = 28
MAX_RR_INTERVALS: Final[int] = 4
METADATA_MIN_SIZE: Final[int] = 14

# skip 4 | unix u32 | skip 6 | bpm u8 | rr_count u8 | 4 x rr u16 | activity u32
_RECORD_STRUCT: Final = struct.Struct("<4xI6xBB4HI")
_METADATA_UNIX: Final = struct.Struct("<I")
_METADATA_DATA_OFFSET: Final[int] = 10


@dataclass(frozen=True)
class HeartRateRecord:
    """One decoded historical heart-rate sample."""

    timestamp: int
    bpm: int
    rr_intervals: tuple[int, ...] = ()
    activity_id: int = 0

    @property
    def recorded_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


@dataclass(frozen=True)
class HistoryMetadata:
    """Pagination marker sent around historical data chunks."""

    unix: int
    data: int
    metadata_type: MetadataType | int

    @property
    def is_end(self) -> bool:
        return self.metadata_type == MetadataType.HISTORY_END


@dataclass
class HistoryDecodeResult:
    """Records recovered from one HistoricalData payload plus what was dropped."""

    records: list[HeartRateRecord] = field(default_factory=list)
    discarded: int = 0
    skipped_bytes: int = 0


def decode_heart_rate_records(payload: bytes) -> HistoryDecodeResult:
    """Decode every complete record in a HistoricalData payload.

    A record whose nonzero RR slots don't match its declared RR count is
    discarded on its own; the records around it are unaffected. Bytes left
    over after the last complete record are reported as skipped.

    Args:
        payload: HistoricalData packet payload

    Returns:
        HistoryDecodeResult with records in payload order

    """
    result = HistoryDecodeResult()
    complete = len(payload) // HISTORY_RECORD_SIZE

    for index in range(complete):
        offset = index * HISTORY_RECORD_SIZE
        unix, bpm, rr_count, rr1, rr2, rr3, rr4, activity_id = _RECORD_STRUCT.unpack_from(payload, offset)
        rr_intervals = tuple(rr for rr in (rr1, rr2, rr3, rr4) if rr != 0)

        if len(rr_intervals) != rr_count:
            result.discarded += 1
            logger.debug(
                "Discarding record %d: declared %d RR intervals, found %d",
                index,
                rr_count,
                len(rr_intervals),
                extra={"record_index": index, "declared_rr": rr_count, "found_rr": len(rr_intervals)},
            )
            continue

        result.records.append(
            HeartRateRecord(timestamp=unix, bpm=bpm, rr_intervals=rr_intervals, activity_id=activity_id),
        )

    result.skipped_bytes = len(payload) - complete * HISTORY_RECORD_SIZE
    if result.skipped_bytes:
        logger.warning(
            "Skipped %d trailing bytes of historical payload",
            result.skipped_bytes,
            extra={"skipped_bytes": result.skipped_bytes, "payload_size": len(payload)},
        )
    return result


def parse_history_metadata(payload: bytes, metadata_type: MetadataType | int) -> HistoryMetadata:
    """Parse a Metadata payload into ``{unix, data}``.

    Raises:
        PacketDecodeError: If the payload is shorter than 14 bytes

    """
    if len(payload) < METADATA_MIN_SIZE:
        error_reason = "metadata_too_short"
        raise PacketDecodeError(error_reason, payload)

    (unix,) = _METADATA_UNIX.unpack_from(payload, 0)
    (data,) = _METADATA_UNIX.unpack_from(payload, _METADATA_DATA_OFFSET)
    try:
        metadata_type = MetadataType(metadata_type)
    except ValueError:
        logger.debug("Unknown metadata type 0x%02x", metadata_type)
    return HistoryMetadata(unix=unix, data=data, metadata_type=metadata_type)
