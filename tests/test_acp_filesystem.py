from __future__ import annotations

from pathlib import Path

import pytest
from acp import RequestError

from tether.acp.filesystem import AcpFsHandler
from tether.sink import EventSink


@pytest.mark.asyncio
async def test_read_text_file_with_line_and_limit(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("one\ntwo\nthree\nfour\n", encoding="utf-8")
    handler = AcpFsHandler(tmp_path)

    response = await handler.read_text_file("notes.txt", line=2, limit=2)

    assert response.content == "two\nthree\n"


@pytest.mark.asyncio
async def test_read_rejects_paths_outside_workspace(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")
    handler = AcpFsHandler(workspace)

    with pytest.raises(RequestError):
        await handler.read_text_file("../secret.txt")
    with pytest.raises(RequestError):
        await handler.read_text_file(str(tmp_path / "secret.txt"))


@pytest.mark.asyncio
async def test_read_binary_file_replaces_invalid_bytes(tmp_path: Path) -> None:
    (tmp_path / "blob.bin").write_bytes(b"ok\xff\xfe\n")
    handler = AcpFsHandler(tmp_path)

    response = await handler.read_text_file("blob.bin")

    assert response.content == "ok\ufffd\ufffd\n"


@pytest.mark.asyncio
async def test_read_missing_file(tmp_path: Path) -> None:
    handler = AcpFsHandler(tmp_path)

    with pytest.raises(RequestError):
        await handler.read_text_file("missing.txt")


@pytest.mark.asyncio
async def test_read_rejects_oversized_file(tmp_path: Path) -> None:
    (tmp_path / "big.txt").write_text("x" * 100, encoding="utf-8")
    handler = AcpFsHandler(tmp_path, max_read_size=10)

    with pytest.raises(RequestError):
        await handler.read_text_file("big.txt")


@pytest.mark.asyncio
async def test_write_creates_parents_and_publishes_change(tmp_path: Path) -> None:
    sink = EventSink()
    seen = []
    sink.subscribe(lambda topic, payload: seen.append((topic, payload)))
    handler = AcpFsHandler(tmp_path, sink=sink)

    await handler.write_text_file("pkg/mod.py", "print('hi')\n")

    assert (tmp_path / "pkg" / "mod.py").read_text(encoding="utf-8") == "print('hi')\n"
    assert seen[0][0] == "file_change"
    assert seen[0][1]["path"] == str((tmp_path / "pkg" / "mod.py").resolve())


@pytest.mark.asyncio
async def test_write_outside_workspace_is_rejected(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    handler = AcpFsHandler(workspace)

    with pytest.raises(RequestError):
        await handler.write_text_file("../escape.txt", "x")
    assert not (tmp_path / "escape.txt").exists()
