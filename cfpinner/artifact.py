"""Tracking image generation and its metadata store.

Every generated PNG carries a pixel pattern seeded from a fresh
identifier, so once uploaded its URL is unique to one upload and any
cache HIT on it comes from this user's own requests.
"""

from __future__ import annotations

import hashlib
import logging
import random
import secrets
import struct
import time
import zlib
from datetime import datetime
from pathlib import Path
from typing import Optional

from cfpinner.config import ARTIFACT_HEIGHT, ARTIFACT_WIDTH, METADATA_SUFFIX
from cfpinner.errors import ConfigurationError
from cfpinner.models import ArtifactMetadata
from cfpinner.storage import StatePaths

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def new_identifier() -> str:
    """12 hex digits of millisecond time followed by 6 random hex digits."""
    millis = int(time.time() * 1000)
    return f"{millis:012x}{secrets.randbelow(0x1000000):06x}"


def render_pixels(identifier: str, width: int, height: int) -> bytes:
    """RGB gradient keyed on *identifier*, blended with seeded noise."""
    seed = int.from_bytes(hashlib.sha256(identifier.encode()).digest()[:8], "big")
    rng = random.Random(seed)
    data = bytearray(width * height * 3)
    idx = 0
    for y in range(height):
        for x in range(width):
            r = (x * 255 // width + seed) % 256
            g = (y * 255 // height + (seed >> 8)) % 256
            b = ((x + y) * 128 // (width + height) + (seed >> 16)) % 256
            data[idx] = (r + rng.randrange(256)) // 2
            data[idx + 1] = (g + rng.randrange(256)) // 2
            data[idx + 2] = (b + rng.randrange(256)) // 2
            idx += 3
    return bytes(data)


def encode_png(pixels: bytes, width: int, height: int) -> bytes:
    """Encode 8-bit RGB *pixels* as a minimal PNG (IHDR, IDAT, IEND)."""
    stride = width * 3
    raw = b"".join(b"\x00" + pixels[y * stride:(y + 1) * stride] for y in range(height))
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return PNG_SIGNATURE + _chunk(b"IHDR", ihdr) + _chunk(b"IDAT", zlib.compress(raw)) + _chunk(b"IEND", b"")


def _chunk(tag: bytes, payload: bytes) -> bytes:
    return struct.pack(">I", len(payload)) + tag + payload + struct.pack(">I", zlib.crc32(tag + payload))


def generate_artifact(paths: StatePaths, output_dir: Optional[Path] = None) -> ArtifactMetadata:
    """Write a new tracking image and record its metadata.

    The image goes to *output_dir* (created if needed), defaulting to the
    state directory's ``images/``.
    """
    identifier = new_identifier()
    target_dir = Path(output_dir) if output_dir else paths.ensure().images
    target_dir.mkdir(parents=True, exist_ok=True)

    filename = f"{identifier}.png"
    full_path = (target_dir / filename).resolve()
    pixels = render_pixels(identifier, ARTIFACT_WIDTH, ARTIFACT_HEIGHT)
    full_path.write_bytes(encode_png(pixels, ARTIFACT_WIDTH, ARTIFACT_HEIGHT))

    metadata = ArtifactMetadata(
        identifier=identifier,
        filename=filename,
        full_path=str(full_path),
        width=ARTIFACT_WIDTH,
        height=ARTIFACT_HEIGHT,
        timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    )
    save_metadata(paths, metadata)
    logger.info("Generated %s", full_path)
    return metadata


def _metadata_path(paths: StatePaths, identifier: str) -> Path:
    return paths.root / f"{identifier}{METADATA_SUFFIX}"


def save_metadata(paths: StatePaths, metadata: ArtifactMetadata) -> Path:
    path = _metadata_path(paths, metadata.identifier)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"identifier={metadata.identifier}",
        f"filename={metadata.filename}",
        f"full_path={metadata.full_path}",
        f"width={metadata.width}",
        f"height={metadata.height}",
        f"timestamp={metadata.timestamp}",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def load_metadata(paths: StatePaths, identifier: str) -> ArtifactMetadata:
    """Read the metadata of a previously generated image.

    Raises
    ------
    ConfigurationError
        If no metadata exists for *identifier* or it is unreadable.
    """
    if not identifier or "/" in identifier or "\\" in identifier:
        raise ConfigurationError(f"Invalid image identifier {identifier!r}")

    path = _metadata_path(paths, identifier)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(
            f"Image with identifier '{identifier}' not found in local database"
        ) from None

    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key] = value

    try:
        return ArtifactMetadata(
            identifier=values.get("identifier", identifier),
            filename=values.get("filename", ""),
            full_path=values.get("full_path", ""),
            width=int(values.get("width", 0)),
            height=int(values.get("height", 0)),
            timestamp=values.get("timestamp", ""),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Corrupt metadata file {path}: {exc}") from exc
