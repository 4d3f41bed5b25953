from __future__ import annotations

import tempfile
from pathlib import Path

import allure
import pytest

from comanda.chunker import (
    CHUNK_DIR_PREFIX,
    ChunkConfig,
    chunk_spans,
    cleanup_chunks,
    split_file,
)
from comanda.errors import ConfigurationError, LimitExceededError

pytestmark = [
    allure.epic("Workflow Core"),
    allure.feature("Chunking"),
]


def _chunk_dirs() -> set[Path]:
    return set(Path(tempfile.gettempdir()).glob(f"{CHUNK_DIR_PREFIX}*"))


def test_lines_with_overlap_share_boundary_lines(tmp_path: Path) -> None:
    source = tmp_path / "input.txt"
    source.write_text("\n".join(f"line {i}" for i in range(25)) + "\n", "utf-8")

    result = split_file(source, ChunkConfig(by="lines", size=10, overlap=2, max_chunks=100))
    try:
        assert result.total_chunks == 3
        assert [path.name for path in result.chunk_paths] == [
            "chunk_0.txt",
            "chunk_1.txt",
            "chunk_2.txt",
        ]
        chunks = [path.read_text("utf-8").split("\n") for path in result.chunk_paths]
        assert chunks[0] == [f"line {i}" for i in range(0, 10)]
        assert chunks[1] == [f"line {i}" for i in range(8, 18)]
        assert chunks[2] == [f"line {i}" for i in range(16, 25)]
    finally:
        cleanup_chunks(result)


def test_chunk_spans_cover_every_unit() -> None:
    spans = chunk_spans(25, ChunkConfig(by="lines", size=10, overlap=2))

    assert spans == [(0, 10), (8, 18), (16, 25)]


@pytest.mark.parametrize(
    ("by", "content"),
    [("lines", b""), ("bytes", b""), ("tokens", b"  \n\t \n")],
)
def test_empty_input_yields_single_empty_chunk(tmp_path: Path, by: str, content: bytes) -> None:
    source = tmp_path / "empty.txt"
    source.write_bytes(content)

    result = split_file(source, ChunkConfig(by=by, size=5))
    try:
        assert result.total_chunks == 1
        assert result.chunk_paths[0].read_bytes() == b""
    finally:
        cleanup_chunks(result)


def test_only_newline_ends_a_line(tmp_path: Path) -> None:
    source = tmp_path / "mixed.txt"
    source.write_bytes(b"alpha\rbeta\r\ngamma")

    result = split_file(source, ChunkConfig(by="lines", size=1))
    try:
        assert [path.read_bytes() for path in result.chunk_paths] == [b"alpha\rbeta", b"gamma"]
    finally:
        cleanup_chunks(result)


@pytest.mark.parametrize(
    "payload",
    [b"alpha\rbeta\ngamma", b"caf\xe9\nna\xefve", b"one\ntwo\nthree\nfour\nfive"],
)
def test_lines_without_overlap_rejoin_to_original(tmp_path: Path, payload: bytes) -> None:
    source = tmp_path / "input.txt"
    source.write_bytes(payload)

    result = split_file(source, ChunkConfig(by="lines", size=2))
    try:
        assert b"\n".join(path.read_bytes() for path in result.chunk_paths) == payload
    finally:
        cleanup_chunks(result)


def test_tokens_without_overlap_keep_undecodable_bytes(tmp_path: Path) -> None:
    payload = b"caf\xe9 au\tlait\nna\xefve  reader"
    source = tmp_path / "latin1.txt"
    source.write_bytes(payload)

    result = split_file(source, ChunkConfig(by="tokens", size=2))
    try:
        assert result.total_chunks == 3
        rejoined = b" ".join(path.read_bytes() for path in result.chunk_paths)
        assert rejoined == b" ".join(payload.split())
    finally:
        cleanup_chunks(result)


def test_limit_is_checked_before_anything_is_written(tmp_path: Path) -> None:
    source = tmp_path / "big.txt"
    source.write_text("\n".join(str(i) for i in range(50)), "utf-8")
    before = _chunk_dirs()

    with pytest.raises(LimitExceededError) as excinfo:
        split_file(source, ChunkConfig(by="lines", size=10, max_chunks=3))

    assert excinfo.value.total_chunks == 5
    assert excinfo.value.max_chunks == 3
    assert _chunk_dirs() == before


def test_bytes_without_overlap_concatenate_to_original(tmp_path: Path) -> None:
    payload = bytes(range(256)) * 3
    source = tmp_path / "blob.bin"
    source.write_bytes(payload)

    result = split_file(source, ChunkConfig(by="bytes", size=100))
    try:
        assert result.total_chunks == 8
        assert b"".join(path.read_bytes() for path in result.chunk_paths) == payload
    finally:
        cleanup_chunks(result)


def test_tokens_are_rejoined_with_single_spaces(tmp_path: Path) -> None:
    source = tmp_path / "words.txt"
    source.write_text("alpha  beta\ngamma\tdelta epsilon\n", "utf-8")

    result = split_file(source, ChunkConfig(by="TOKENS", size=2))
    try:
        texts = [path.read_text("utf-8") for path in result.chunk_paths]
        assert texts == ["alpha beta", "gamma delta", "epsilon"]
    finally:
        cleanup_chunks(result)


def test_negative_overlap_is_treated_as_zero() -> None:
    assert chunk_spans(5, ChunkConfig(by="lines", size=2, overlap=-3)) == [(0, 2), (2, 4), (4, 5)]


def test_non_positive_max_chunks_falls_back_to_default() -> None:
    spans = chunk_spans(150, ChunkConfig(by="lines", size=1, max_chunks=0))

    assert len(spans) == 100


@pytest.mark.parametrize(
    ("config", "message"),
    [
        (ChunkConfig(by="paragraphs", size=10), "Invalid split method"),
        (ChunkConfig(by="lines", size=0), "greater than 0"),
        (ChunkConfig(by="lines", size=5, overlap=5), "smaller than chunk size"),
    ],
)
def test_invalid_configuration_is_rejected(tmp_path: Path, config, message: str) -> None:
    source = tmp_path / "input.txt"
    source.write_text("a\nb\n", "utf-8")

    with pytest.raises(ConfigurationError, match=message):
        split_file(source, config)


def test_cleanup_is_idempotent(tmp_path: Path) -> None:
    source = tmp_path / "input.txt"
    source.write_text("a\nb\nc\n", "utf-8")
    result = split_file(source, ChunkConfig(by="lines", size=1))
    assert result.temp_dir is not None and result.temp_dir.is_dir()

    cleanup_chunks(result)
    cleanup_chunks(result)
    cleanup_chunks(None)

    assert not result.temp_dir.exists()
