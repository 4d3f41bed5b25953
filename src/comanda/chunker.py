"""Split large input files into bounded, optionally overlapping chunk files."""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from comanda.errors import ConfigurationError, LimitExceededError

logger = logging.getLogger(__name__)

SPLIT_MODES = ("lines", "bytes", "tokens")
DEFAULT_MAX_CHUNKS = 100
CHUNK_DIR_PREFIX = "comanda-chunks-"


@dataclass(slots=True)
class ChunkConfig:
    """How to split a file: unit kind, chunk size, overlap and chunk ceiling."""

    by: str
    size: int
    overlap: int = 0
    max_chunks: int = DEFAULT_MAX_CHUNKS


@dataclass(slots=True)
class ChunkResult:
    """Chunk files produced by one split, owned by the caller until released."""

    chunk_paths: list[Path] = field(default_factory=list)
    temp_dir: Path | None = None
    total_chunks: int = 0


def split_file(file_path: str | Path, config: ChunkConfig) -> ChunkResult:
    """Split ``file_path`` into chunk files inside a fresh temporary directory.

    Raises ``ConfigurationError`` for an invalid configuration and
    ``LimitExceededError`` when the file would need more than
    ``config.max_chunks`` chunks. Nothing is written in either case.
    """

    config = _validated(config)
    path = Path(file_path)

    if config.by == "bytes":
        total = path.stat().st_size
        units: list[bytes] | None = None
    else:
        units = _read_units(path, config.by)
        total = len(units)

    if total == 0:
        temp_dir = _make_temp_dir()
        chunk_path = temp_dir / "chunk_0.txt"
        try:
            chunk_path.write_bytes(b"")
        except OSError:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise
        logger.debug("Empty input %s, wrote single empty chunk", path)
        return ChunkResult(chunk_paths=[chunk_path], temp_dir=temp_dir, total_chunks=1)

    expected = -(-total // config.size)
    if expected > config.max_chunks:
        raise LimitExceededError(
            f"File {path} would generate {expected} chunks, "
            f"exceeding the maximum of {config.max_chunks}",
            total_chunks=expected,
            max_chunks=config.max_chunks,
        )

    temp_dir = _make_temp_dir()
    try:
        if units is None:
            chunk_paths = _write_byte_chunks(path, temp_dir, config, total)
        else:
            separator = b"\n" if config.by == "lines" else b" "
            chunk_paths = _write_unit_chunks(units, separator, temp_dir, config)
    except OSError:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise

    logger.info(
        "Split %s by %s into %d chunks (size=%d, overlap=%d)",
        path,
        config.by,
        len(chunk_paths),
        config.size,
        config.overlap,
    )
    return ChunkResult(chunk_paths=chunk_paths, temp_dir=temp_dir, total_chunks=len(chunk_paths))


def cleanup_chunks(result: ChunkResult | None) -> None:
    """Delete the chunk directory; safe to call twice or with ``None``."""

    if result is None or result.temp_dir is None:
        return
    shutil.rmtree(result.temp_dir, ignore_errors=True)


def chunk_spans(total: int, config: ChunkConfig) -> list[tuple[int, int]]:
    """Return ``[start, end)`` unit ranges for ``total`` units under ``config``."""

    config = _validated(config)
    if total == 0:
        return [(0, 0)]
    step = config.size - config.overlap
    spans: list[tuple[int, int]] = []
    start = 0
    while start < total and len(spans) < config.max_chunks:
        end = min(start + config.size, total)
        spans.append((start, end))
        if end >= total:
            break
        start += step
    return spans


def _validated(config: ChunkConfig) -> ChunkConfig:
    mode = config.by.strip().lower() if isinstance(config.by, str) else ""
    if mode not in SPLIT_MODES:
        raise ConfigurationError(
            f"Invalid split method: {config.by!r} (must be 'lines', 'bytes', or 'tokens')",
        )
    if config.size <= 0:
        raise ConfigurationError(f"Chunk size must be greater than 0, got {config.size}")
    overlap = max(config.overlap, 0)
    if overlap >= config.size:
        raise ConfigurationError(
            f"Chunk overlap must be smaller than chunk size, got overlap={overlap} "
            f"size={config.size}",
        )
    max_chunks = config.max_chunks if config.max_chunks > 0 else DEFAULT_MAX_CHUNKS
    return ChunkConfig(by=mode, size=config.size, overlap=overlap, max_chunks=max_chunks)


def _read_units(path: Path, mode: str) -> list[bytes]:
    data = path.read_bytes()
    if mode == "tokens":
        return data.split()
    if not data:
        return []
    lines = data.split(b"\n")
    if data.endswith(b"\n"):
        lines.pop()
    # Only "\n" ends a line; one trailing "\r" per line is dropped.
    return [line[:-1] if line.endswith(b"\r") else line for line in lines]


def _make_temp_dir() -> Path:
    return Path(tempfile.mkdtemp(prefix=CHUNK_DIR_PREFIX))


def _write_unit_chunks(
    units: list[bytes],
    separator: bytes,
    temp_dir: Path,
    config: ChunkConfig,
) -> list[Path]:
    chunk_paths: list[Path] = []
    for index, (start, end) in enumerate(chunk_spans(len(units), config)):
        chunk_path = temp_dir / f"chunk_{index}.txt"
        chunk_path.write_bytes(separator.join(units[start:end]))
        chunk_paths.append(chunk_path)
    return chunk_paths


def _write_byte_chunks(
    path: Path,
    temp_dir: Path,
    config: ChunkConfig,
    total: int,
) -> list[Path]:
    chunk_paths: list[Path] = []
    with path.open("rb") as handle:
        for index, (start, end) in enumerate(chunk_spans(total, config)):
            handle.seek(start)
            chunk_path = temp_dir / f"chunk_{index}.txt"
            chunk_path.write_bytes(handle.read(end - start))
            chunk_paths.append(chunk_path)
    return chunk_paths
