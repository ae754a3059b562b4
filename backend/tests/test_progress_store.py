"""Tests for the durable progress store."""

import pytest

from orchestrator.errors import StageRegressionError, TaskVanishedError
from orchestrator.progress_store import DuplicateTaskError, ProgressStore
from orchestrator.stages import Stage, resolve_stage_sequence


def test_create_starts_not_started(progress):
    task = progress.create("echo", "echo service")
    assert task.id is not None
    assert task.stage is Stage.NOT_STARTED
    assert progress.load(task.id) is Stage.NOT_STARTED
    assert task.created_at is not None


def test_duplicate_name_rejected(progress):
    progress.create("echo", "first")
    with pytest.raises(DuplicateTaskError):
        progress.create("echo", "second")


def test_advance_follows_sequence(progress):
    task = progress.create("echo", "echo service")
    for stage in progress.sequence:
        assert progress.advance(task.id, stage) is True
    assert progress.load(task.id) is Stage.DONE


def test_advance_same_stage_is_noop(progress):
    task = progress.create("echo", "echo service")
    progress.advance(task.id, Stage.INTERFACE_DEFINITION)
    assert progress.advance(task.id, Stage.INTERFACE_DEFINITION) is False
    assert progress.writes == [Stage.INTERFACE_DEFINITION]


def test_advance_rejects_regression(progress):
    task = progress.create("echo", "echo service")
    progress.advance(task.id, Stage.INTERFACE_DEFINITION)
    progress.advance(task.id, Stage.SERVER_IMPLEMENTATION)
    with pytest.raises(StageRegressionError):
        progress.advance(task.id, Stage.INTERFACE_DEFINITION)
    assert progress.load(task.id) is Stage.SERVER_IMPLEMENTATION


def test_advance_rejects_skip(progress):
    task = progress.create("echo", "echo service")
    progress.advance(task.id, Stage.INTERFACE_DEFINITION)
    with pytest.raises(StageRegressionError):
        progress.advance(task.id, Stage.CONTAINER_BUILD)


def test_short_sequence_goes_straight_to_done(session_factory):
    store = ProgressStore(session_factory, resolve_stage_sequence(["interface_definition"]))
    task = store.create("echo", "echo service")
    store.advance(task.id, Stage.INTERFACE_DEFINITION)
    assert store.advance(task.id, Stage.DONE) is True


def test_advance_missing_task(progress):
    with pytest.raises(TaskVanishedError):
        progress.advance(999, Stage.INTERFACE_DEFINITION)
    assert progress.load(999) is None


def test_mark_failed_keeps_stage_and_advance_clears_error(progress):
    task = progress.create("echo", "echo service")
    progress.advance(task.id, Stage.INTERFACE_DEFINITION)

    progress.mark_failed(task.id, "budget exhausted")
    failed = progress.get(task.id)
    assert failed.stage is Stage.INTERFACE_DEFINITION
    assert failed.error == "budget exhausted"

    progress.advance(task.id, Stage.SERVER_IMPLEMENTATION)
    assert progress.get(task.id).error is None


def test_mark_failed_on_missing_task_is_quiet(progress):
    progress.mark_failed(42, "gone")


def test_unfinished_includes_failed_and_excludes_done(session_factory):
    store = ProgressStore(session_factory, resolve_stage_sequence(["interface_definition"]))
    fresh = store.create("fresh", "a")
    failed = store.create("failed", "b")
    done = store.create("done", "c")
    store.advance(failed.id, Stage.INTERFACE_DEFINITION)
    store.mark_failed(failed.id, "budget exhausted")
    store.advance(done.id, Stage.INTERFACE_DEFINITION)
    store.advance(done.id, Stage.DONE)

    assert [t.name for t in store.unfinished()] == ["fresh", "failed"]
    assert [t.name for t in store.pending()] == ["fresh"]
    assert [t.name for t in store.list_tasks()] == ["fresh", "failed", "done"]


def test_advance_is_visible_to_a_new_store(session_factory, sequence):
    writer = ProgressStore(session_factory, sequence)
    task = writer.create("echo", "echo service")
    writer.advance(task.id, Stage.INTERFACE_DEFINITION)

    reader = ProgressStore(session_factory, sequence)
    assert reader.load(task.id) is Stage.INTERFACE_DEFINITION


def test_claim_wins_once(progress):
    task = progress.create("echo", "echo service")

    assert progress.claim(task.id) is True
    assert progress.claim(task.id) is False
    assert progress.load(task.id) is Stage.INTERFACE_DEFINITION
    assert progress.writes == [Stage.INTERFACE_DEFINITION]


def test_claim_loses_to_another_store(session_factory, sequence):
    first = ProgressStore(session_factory, sequence)
    second = ProgressStore(session_factory, sequence)
    task = first.create("echo", "echo service")

    assert first.claim(task.id) is True
    assert second.claim(task.id) is False


def test_claim_missing_task(progress):
    with pytest.raises(TaskVanishedError):
        progress.claim(999)


def test_advance_after_claim_continues_sequence(progress):
    task = progress.create("echo", "echo service")
    progress.claim(task.id)
    assert progress.advance(task.id, Stage.SERVER_IMPLEMENTATION) is True
