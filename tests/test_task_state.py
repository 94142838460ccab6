from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from pydantic import ValidationError

from task_state import InMemoryTaskRepository, TaskError, TaskRecord, TaskStatus
from task_state import repository as repository_module


def _record(task_id: str = "abc12345", **overrides) -> TaskRecord:
    values = {"task_id": task_id, "temp_dir": f"/tmp/ppt-to-video/{task_id}"}
    values.update(overrides)
    return TaskRecord(**values)


@pytest.mark.asyncio
async def test_next_task_id_is_short_lowercase_alphanumeric() -> None:
    repository = InMemoryTaskRepository()

    ids = {await repository.next_task_id() for _ in range(50)}

    assert len(ids) == 50
    for task_id in ids:
        assert len(task_id) == 8
        assert task_id.isalnum()
        assert task_id == task_id.lower()


@pytest.mark.asyncio
async def test_unsaved_ids_are_not_handed_out_twice(monkeypatch: pytest.MonkeyPatch) -> None:
    draws = iter("aab")
    monkeypatch.setattr(repository_module.secrets, "choice", lambda _alphabet: next(draws))
    repository = InMemoryTaskRepository(id_length=1)

    first = await repository.next_task_id()
    second = await repository.next_task_id()

    assert (first, second) == ("a", "b")

    await repository.save(_record(first))
    assert repository._reserved == {"b"}


def test_repository_rejects_non_positive_id_length() -> None:
    with pytest.raises(ValueError):
        InMemoryTaskRepository(id_length=0)


@pytest.mark.asyncio
async def test_update_merges_patch_and_appends_log() -> None:
    repository = InMemoryTaskRepository()
    await repository.save(_record(message="Task created, waiting to be processed"))

    updated = await repository.update(
        "abc12345",
        {"status": TaskStatus.PROCESSING, "progress": 10},
        log_entry="Rasterization started",
    )

    assert updated is not None
    assert updated.status is TaskStatus.PROCESSING
    assert updated.progress == 10
    assert updated.message == "Task created, waiting to be processed"
    assert [entry.message for entry in updated.logs] == ["Rasterization started"]
    stored = await repository.get("abc12345")
    assert stored is updated


@pytest.mark.asyncio
async def test_update_never_moves_progress_backwards() -> None:
    repository = InMemoryTaskRepository()
    await repository.save(_record(status=TaskStatus.UPLOADING, progress=55))

    updated = await repository.update("abc12345", {"progress": 40, "message": "Uploading slide images"})

    assert updated is not None
    assert updated.progress == 55
    assert updated.message == "Uploading slide images"


@pytest.mark.asyncio
async def test_failed_record_only_accepts_log_appends() -> None:
    repository = InMemoryTaskRepository()
    error = TaskError(step="upload", message="Storage bucket is missing")
    await repository.save(
        _record(status=TaskStatus.FAILED, progress=100, message="Storage bucket is missing", error=error)
    )

    updated = await repository.update(
        "abc12345",
        {"status": TaskStatus.SUCCESS, "video_url": "https://cdn.example.com/v.mp4"},
        log_entry="late update ignored",
    )

    assert updated is not None
    assert updated.status is TaskStatus.FAILED
    assert updated.video_url == ""
    assert updated.error == error
    assert updated.logs[-1].message == "late update ignored"


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields_and_invalid_values() -> None:
    repository = InMemoryTaskRepository()
    await repository.save(_record())

    with pytest.raises(ValueError):
        await repository.update("abc12345", {"not_a_field": 1})
    with pytest.raises(ValidationError):
        await repository.update("abc12345", {"progress": 150})

    stored = await repository.get("abc12345")
    assert stored is not None
    assert stored.progress == 0


@pytest.mark.asyncio
async def test_update_and_append_log_return_none_for_unknown_task() -> None:
    repository = InMemoryTaskRepository()

    assert await repository.update("missing1", {"progress": 5}) is None
    assert await repository.append_log("missing1", "hello") is None
    assert await repository.get("missing1") is None


@pytest.mark.asyncio
async def test_concurrent_updates_keep_every_log_entry() -> None:
    repository = InMemoryTaskRepository()
    await repository.save(_record())

    await asyncio.gather(
        *(repository.update("abc12345", {"progress": value}, log_entry=f"step {value}") for value in range(1, 21))
    )

    stored = await repository.get("abc12345")
    assert stored is not None
    assert stored.progress == 20
    assert sorted(entry.message for entry in stored.logs) == sorted(f"step {value}" for value in range(1, 21))


def test_record_serialization_hides_buffer_and_formats_timestamps() -> None:
    record = _record(buffer=b"%PDF-1.7")

    dumped = record.model_dump()

    assert "buffer" not in dumped
    datetime.fromisoformat(dumped["created_at"])
    assert dumped["resolution"] == {"width": 1280, "height": 720}
    assert dumped["transition"] == "fade"
    assert dumped["duration_per_slide"] == 3


def test_terminal_statuses() -> None:
    assert TaskStatus.SUCCESS.is_terminal
    assert TaskStatus.FAILED.is_terminal
    assert not TaskStatus.RENDERING.is_terminal
    assert not TaskStatus.QUEUED.is_terminal
