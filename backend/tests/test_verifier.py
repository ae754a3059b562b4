"""Tests for the shell command verifier."""

import shutil
import threading
import time

import pytest

from verification.verifier import CommandVerifier, VerificationStep

pytestmark = pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")


def step(command, timeout=10.0, exclusive=False):
    return VerificationStep(stage="test", command=command, timeout=timeout, exclusive=exclusive)


def test_success(tmp_path):
    outcome = CommandVerifier().verify(step("echo built"), tmp_path)
    assert outcome.success
    assert outcome.exit_code == 0
    assert outcome.output.strip() == "built"


def test_failure_merges_stderr(tmp_path):
    outcome = CommandVerifier().verify(step("echo out; echo err >&2; exit 3"), tmp_path)
    assert not outcome.success
    assert outcome.exit_code == 3
    assert "out" in outcome.output
    assert "err" in outcome.output


def test_runs_in_tree(tmp_path):
    (tmp_path / "marker.txt").write_text("here")
    outcome = CommandVerifier().verify(step("cat marker.txt"), tmp_path)
    assert outcome.output == "here"


def test_timeout_kills_process_group(tmp_path):
    t0 = time.monotonic()
    outcome = CommandVerifier().verify(step("echo starting; sleep 30 & sleep 30", timeout=0.5), tmp_path)
    assert time.monotonic() - t0 < 10
    assert not outcome.success
    assert outcome.timed_out
    assert "starting" in outcome.output
    assert "timed out" in outcome.output


def test_missing_tree_is_a_failure(tmp_path):
    outcome = CommandVerifier().verify(step("true"), tmp_path / "missing")
    assert not outcome.success
    assert outcome.exit_code is None
    assert outcome.output


def test_exclusive_steps_wait_for_gate(tmp_path):
    gate = threading.BoundedSemaphore(1)
    verifier = CommandVerifier(admission_gate=gate)
    results = []

    gate.acquire()
    worker = threading.Thread(
        target=lambda: results.append(verifier.verify(step("true", exclusive=True), tmp_path))
    )
    worker.start()
    time.sleep(0.3)
    assert results == []

    gate.release()
    worker.join(5)
    assert results and results[0].success


def test_non_exclusive_steps_ignore_gate(tmp_path):
    gate = threading.BoundedSemaphore(1)
    gate.acquire()
    outcome = CommandVerifier(admission_gate=gate).verify(step("true"), tmp_path)
    assert outcome.success
    gate.release()
