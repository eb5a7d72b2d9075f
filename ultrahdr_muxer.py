#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Ultra HDR (JPEG + gain map) container muxer.

Packages an SDR JPEG and a gain-map JPEG into one Multi-Picture Format file:

    SOI [APP0]  APP1(XMP)  APP2(MPF)  ...rest of SDR...  | gain-map JPEG
    <------------------- primary image ----------------> <-- secondary -->

The XMP packet declares the gain-map parameters in three namespaces (Adobe
hdrgm, Apple HDRGainMap, Google gainmap) and a Container directory listing
both items. The MPF directory records the size of each image and the offset
of the secondary image relative to the MPF TIFF header.

Layout of the 96-byte APP2 segment:

    FF E2 00 5E  "MPF\\0"                          marker, length 94, identifier
    49 49 2A 00 08 00 00 00                       TIFF header "II", IFD at 8
    03 00                                         3 IFD entries
    00 B0 07 00 04 00 00 00 "0100"                MP Format Version
    01 B0 04 00 01 00 00 00 02 00 00 00           Number of Images = 2
    02 B0 07 00 20 00 00 00 32 00 00 00           MP Entry (32 bytes at +50)
    00 00 00 00                                   next IFD
    03 00 01 00 <size> 00 00 00 00 00 00 00 00    primary entry
    00 00 02 00 <size> <offset> 00 00 00 00       secondary entry
    00 * 6                                        padding
"""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Final

__all__: Final[list[str]] = [
    "MuxerError",
    "MuxerInputError",
    "MuxerOffsetMismatch",
    "MpEntry",
    "ContainerInfo",
    "build_xmp",
    "build_xmp_segment",
    "build_mpf_segment",
    "insertion_point",
    "mux_ultrahdr",
    "mux_ultrahdr_file",
    "inspect_container",
    "split_container",
]

logger = logging.getLogger(__name__)

XMP_NAMESPACE: Final[bytes] = b"http://ns.adobe.com/xap/1.0/\x00"
MPF_IDENTIFIER: Final[bytes] = b"MPF\x00"

SOI: Final[bytes] = b"\xff\xd8"
APP0: Final[int] = 0xE0
APP1: Final[int] = 0xE1
APP2: Final[int] = 0xE2
SOS: Final[int] = 0xDA

MPF_PAYLOAD_SIZE: Final[int] = 92
MPF_SEGMENT_SIZE: Final[int] = MPF_PAYLOAD_SIZE + 4
# APP2 marker + length + "MPF\0" precede the TIFF header
MPF_TIFF_OFFSET: Final[int] = 8
MP_ENTRY_TABLE_OFFSET: Final[int] = 50  # relative to the TIFF header
MP_ENTRY_SIZE: Final[int] = 16

ATTR_PRIMARY: Final[int] = 0x03000100
ATTR_SECONDARY: Final[int] = 0x00000200

TAG_MP_FORMAT_VERSION: Final[int] = 0xB000
TAG_NUMBER_OF_IMAGES: Final[int] = 0xB001
TAG_MP_ENTRY: Final[int] = 0xB002

MAX_SEGMENT_LENGTH: Final[int] = 0xFFFF
MAX_UINT32: Final[int] = 0xFFFFFFFF


# =============================================================================
# Exceptions
# =============================================================================


class MuxerError(Exception):
    """Base exception for Ultra HDR muxing errors."""

    pass


class MuxerInputError(MuxerError):
    """Input bytes or parameters cannot produce a valid container."""

    pass


class MuxerOffsetMismatch(MuxerError):
    """Assembled layout disagrees with the offsets written to the MPF directory."""

    __slots__ = ("expected", "actual")

    def __init__(self, message: str, *, expected: int, actual: int) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


# =============================================================================
# Segment builders
# =============================================================================

_XMP_TEMPLATE: Final[str] = """\
<?xpacket begin="?" id="W5M0MpCehiHzreSzNTczkc9d"?>
<x:xmpmeta xmlns:x="adobe:ns:meta/" x:xmptk="XMP Core 5.5.0">
 <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
  <rdf:Description rdf:about=""
    xmlns:hdrgm="http://ns.adobe.com/hdr-gain-map/1.0/"
    xmlns:apple-hdrgm="http://ns.apple.com/HDRGainMap/1.0/"
    xmlns:gainmap="http://ns.google.com/photos/1.0/gainmap/"
    xmlns:Container="http://ns.google.com/photos/1.0/container/"
    xmlns:Item="http://ns.google.com/photos/1.0/container/item/"
    hdrgm:Version="1.0"
    hdrgm:GainMapMax="{gain_max}"
    hdrgm:GainMapMin="0.0"
    hdrgm:Gamma="1.0"
    hdrgm:OffsetSdr="0.0"
    hdrgm:OffsetHdr="0.0"
    hdrgm:HDRCapacityMin="0.0"
    hdrgm:HDRCapacityMax="{gain_max}"
    hdrgm:BaseRendition="SDR"
    apple-hdrgm:Version="1.0"
    gainmap:Version="1.0"
    gainmap:GainMapMax="{gain_max}"
    gainmap:GainMapMin="0.0"
    gainmap:Gamma="1.0">
   <Container:Directory>
    <rdf:Seq>
     <rdf:li rdf:parseType="Resource">
      <Container:Item Item:Mime="image/jpeg" Item:Semantic="Primary"/>
     </rdf:li>
     <rdf:li rdf:parseType="Resource">
      <Container:Item Item:Mime="image/jpeg" Item:Semantic="GainMap">
       <Container:Item Item:Length="{gain_map_length}"/>
      </Container:Item>
     </rdf:li>
    </rdf:Seq>
   </Container:Directory>
  </rdf:Description>
 </rdf:RDF>
</x:xmpmeta>
<?xpacket end="w"?>"""


def build_xmp(headroom: float, gain_map_length: int) -> str:
    """XMP packet for a gain map spanning 1x..headroom.

    GainMapMax and HDRCapacityMax are log2(headroom) with 4 decimal places.
    """
    if headroom <= 0.0 or not math.isfinite(headroom):
        raise MuxerInputError(f"headroom must be a positive finite number, got {headroom}")
    return _XMP_TEMPLATE.format(
        gain_max=f"{math.log2(headroom):.4f}",
        gain_map_length=gain_map_length,
    )


def build_xmp_segment(xmp: str) -> bytes:
    """APP1 segment: FF E1, big-endian length (payload + 2), namespace, XMP text."""
    payload = XMP_NAMESPACE + xmp.encode("utf-8")
    length = len(payload) + 2
    if length > MAX_SEGMENT_LENGTH:
        raise MuxerInputError(f"XMP segment too large: {length} bytes")
    return struct.pack(">BBH", 0xFF, APP1, length) + payload


def build_mpf_segment(primary_size: int, secondary_size: int, offset_to_second: int) -> bytes:
    """APP2 MPF segment describing a primary image and one gain-map image."""
    for name, value in (
        ("primary size", primary_size),
        ("secondary size", secondary_size),
        ("secondary offset", offset_to_second),
    ):
        if not 0 <= value <= MAX_UINT32:
            raise MuxerInputError(f"{name} {value} does not fit in uint32")

    segment = b"".join(
        (
            struct.pack(">BBH", 0xFF, APP2, MPF_PAYLOAD_SIZE + 2),
            MPF_IDENTIFIER,
            # Little-endian TIFF header, first IFD at offset 8
            b"II", struct.pack("<HI", 0x002A, 8),
            struct.pack("<H", 3),
            struct.pack("<HHI4s", TAG_MP_FORMAT_VERSION, 7, 4, b"0100"),
            struct.pack("<HHII", TAG_NUMBER_OF_IMAGES, 4, 1, 2),
            struct.pack("<HHII", TAG_MP_ENTRY, 7, 2 * MP_ENTRY_SIZE, MP_ENTRY_TABLE_OFFSET),
            struct.pack("<I", 0),
            # MP entries: attribute flags are laid out big-endian
            struct.pack(">I", ATTR_PRIMARY), struct.pack("<III", primary_size, 0, 0),
            struct.pack(">I", ATTR_SECONDARY),
            struct.pack("<III", secondary_size, offset_to_second, 0),
        )
    )
    return segment.ljust(MPF_SEGMENT_SIZE, b"\x00")


def insertion_point(sdr: bytes) -> int:
    """Offset just after SOI, or after the APP0/JFIF segment when one follows it."""
    if len(sdr) > 6 and sdr[2] == 0xFF and sdr[3] == APP0:
        (app0_length,) = struct.unpack_from(">H", sdr, 4)
        position = 4 + app0_length
        if position > len(sdr):
            raise MuxerInputError("APP0 segment runs past the end of the SDR image")
        return position
    return 2


# =============================================================================
# Muxing
# =============================================================================


def mux_ultrahdr(sdr: bytes, gain_map: bytes, headroom: float) -> bytes:
    """Build an Ultra HDR container from an SDR JPEG and a gain-map JPEG.

    Args:
        sdr: Complete SDR base JPEG
        gain_map: Complete gain-map JPEG, appended verbatim
        headroom: Maximum content boost (linear), written as log2 in the XMP

    Returns:
        Container bytes; the first primary_size bytes are the primary image

    Raises:
        MuxerInputError: Missing SOI, bad headroom or sizes out of range
        MuxerOffsetMismatch: Assembled primary disagrees with the MPF directory
    """
    if not sdr.startswith(SOI):
        raise MuxerInputError("SDR image does not start with a JPEG SOI marker")
    if not gain_map.startswith(SOI):
        logger.warning("Gain map does not start with a JPEG SOI marker")

    xmp_segment = build_xmp_segment(build_xmp(headroom, len(gain_map)))
    position = insertion_point(sdr)

    tiff_offset = position + len(xmp_segment) + MPF_TIFF_OFFSET
    primary_size = len(sdr) + len(xmp_segment) + MPF_SEGMENT_SIZE
    offset_to_second = primary_size - tiff_offset

    mpf_segment = build_mpf_segment(primary_size, len(gain_map), offset_to_second)

    out = bytearray()
    out += sdr[:position]
    out += xmp_segment
    out += mpf_segment
    out += sdr[position:]

    if len(out) != primary_size:
        raise MuxerOffsetMismatch(
            f"Primary image is {len(out)} bytes, MPF directory says {primary_size}",
            expected=primary_size,
            actual=len(out),
        )
    if out[tiff_offset : tiff_offset + 2] != b"II":
        raise MuxerOffsetMismatch(
            f"TIFF header not found at offset {tiff_offset}",
            expected=tiff_offset,
            actual=bytes(out).find(b"II*\x00"),
        )

    out += gain_map
    logger.debug(
        "Muxed Ultra HDR: primary %d bytes, gain map %d bytes, offset %d",
        primary_size,
        len(gain_map),
        offset_to_second,
    )
    return bytes(out)


def mux_ultrahdr_file(sdr_path: Path, gain_map_path: Path, output_path: Path, headroom: float) -> Path:
    """File wrapper around mux_ultrahdr; I/O errors propagate."""
    data = mux_ultrahdr(sdr_path.read_bytes(), gain_map_path.read_bytes(), headroom)
    output_path.write_bytes(data)
    return output_path


# =============================================================================
# Inspection
# =============================================================================


@dataclass(frozen=True, slots=True)
class MpEntry:
    """One MP entry; offset is absolute within the file."""

    attribute: int
    size: int
    offset: int

    @property
    def is_primary(self) -> bool:
        return self.offset == 0


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    tiff_offset: int
    version: str
    entries: tuple[MpEntry, ...]
    xmp: str | None = None

    @property
    def primary_size(self) -> int:
        return self.entries[0].size


def inspect_container(data: bytes) -> ContainerInfo:
    """Decode the MPF directory (and XMP, when present) of a multi-picture JPEG.

    Raises:
        MuxerInputError: Not a JPEG, or no MPF segment before the scan data
    """
    if not data.startswith(SOI):
        raise MuxerInputError("Not a JPEG: missing SOI marker")

    xmp: str | None = None
    pos = 2
    while pos + 4 <= len(data):
        if data[pos] != 0xFF:
            raise MuxerInputError(f"Expected marker at offset {pos}")
        marker = data[pos + 1]
        if marker == SOS:
            break
        (length,) = struct.unpack_from(">H", data, pos + 2)
        payload = data[pos + 4 : pos + 2 + length]

        if marker == APP1 and payload.startswith(XMP_NAMESPACE):
            xmp = payload[len(XMP_NAMESPACE) :].decode("utf-8", "replace")
        elif marker == APP2 and payload.startswith(MPF_IDENTIFIER):
            return _parse_mpf(data, pos + MPF_TIFF_OFFSET, xmp)

        pos += 2 + length

    raise MuxerInputError("No MPF segment found")


def _parse_mpf(data: bytes, tiff: int, xmp: str | None) -> ContainerInfo:
    order = data[tiff : tiff + 2]
    if order == b"II":
        bo = "<"
    elif order == b"MM":
        bo = ">"
    else:
        raise MuxerInputError(f"Bad TIFF byte order {order!r}")

    try:
        (ifd_offset,) = struct.unpack_from(f"{bo}I", data, tiff + 4)
        (count,) = struct.unpack_from(f"{bo}H", data, tiff + ifd_offset)

        version = ""
        images = 0
        entry_offset = 0
        for i in range(count):
            tag, _type, n, value = struct.unpack_from(
                f"{bo}HHI4s", data, tiff + ifd_offset + 2 + i * 12
            )
            if tag == TAG_MP_FORMAT_VERSION:
                version = value.decode("ascii", "replace")
            elif tag == TAG_NUMBER_OF_IMAGES:
                (images,) = struct.unpack(f"{bo}I", value)
            elif tag == TAG_MP_ENTRY:
                (entry_offset,) = struct.unpack(f"{bo}I", value)

        entries = []
        for i in range(images):
            base = tiff + entry_offset + i * MP_ENTRY_SIZE
            (attribute,) = struct.unpack_from(">I", data, base)
            size, offset = struct.unpack_from(f"{bo}II", data, base + 4)
            entries.append(MpEntry(attribute, size, tiff + offset if offset else 0))
    except struct.error as e:
        raise MuxerInputError(f"Truncated MPF directory: {e}") from e

    if not entries:
        raise MuxerInputError("MPF directory lists no images")
    return ContainerInfo(tiff_offset=tiff, version=version, entries=tuple(entries), xmp=xmp)


def split_container(data: bytes) -> tuple[bytes, bytes]:
    """Return (primary, gain map) bytes of an Ultra HDR container."""
    info = inspect_container(data)
    if len(info.entries) < 2:
        raise MuxerInputError("Container has no secondary image")
    secondary = info.entries[1]
    return data[: info.primary_size], data[secondary.offset : secondary.offset + secondary.size]
