"""Stage verification by running a shell command against the artifact tree.

Each command runs through ``sh -c`` with the task directory as its working
directory and stderr folded into stdout. The command is started in its own
session so a timeout can kill the whole process group, including whatever
compilers or docker clients it spawned.

Commands flagged exclusive (image builds against a shared docker daemon)
must first pass the admission gate shared by every task in the process.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Keep the tail of very chatty builds; only the last lines are ever used
MAX_OUTPUT_CHARS = 200_000


@dataclass
class VerificationStep:
    """One command to run for a stage."""
    stage: str
    command: str
    timeout: float
    exclusive: bool = False


@dataclass
class VerificationOutcome:
    """Result of a verification command."""
    success: bool
    output: str
    command: str
    exit_code: Optional[int] = None
    timed_out: bool = False
    duration_s: float = 0.0


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    text = data.decode("utf-8", errors="replace")
    if len(text) > MAX_OUTPUT_CHARS:
        text = f"[... truncated to last {MAX_OUTPUT_CHARS} chars ...]\n" + text[-MAX_OUTPUT_CHARS:]
    return text


class CommandVerifier:
    """Runs verification commands with a timeout and an admission gate."""

    def __init__(self, admission_gate: Optional[threading.Semaphore] = None,
                 shell: str = "sh"):
        """Initialize the verifier.

        Args:
            admission_gate: Semaphore held while an exclusive command runs.
                Defaults to a gate admitting one command at a time.
            shell: Shell used to interpret commands.
        """
        self.admission_gate = admission_gate or threading.BoundedSemaphore(1)
        self.shell = shell

    def verify(self, step: VerificationStep, tree: Path) -> VerificationOutcome:
        """Run ``step`` in ``tree`` and classify the result.

        Never raises for command failures: a non-zero exit, a timeout or a
        command that cannot be started all come back as unsuccessful outcomes.
        """
        if step.exclusive:
            logger.debug(f"[{step.stage}] waiting for exclusive verification slot")
            with self.admission_gate:
                return self._run(step, tree)
        return self._run(step, tree)

    def _run(self, step: VerificationStep, tree: Path) -> VerificationOutcome:
        logger.info(f"[{step.stage}] running: {step.command} (cwd={tree}, timeout={step.timeout}s)")
        t0 = time.monotonic()
        try:
            proc = subprocess.Popen(
                [self.shell, "-c", step.command],
                cwd=str(tree),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.warning(f"[{step.stage}] could not start command: {e}")
            return VerificationOutcome(
                success=False,
                output=str(e),
                command=step.command,
                duration_s=time.monotonic() - t0,
            )

        try:
            out, _ = proc.communicate(timeout=step.timeout)
        except subprocess.TimeoutExpired as e:
            self._kill_group(proc)
            # A second communicate() returns everything read so far plus the rest
            try:
                partial, _ = proc.communicate(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning(f"[{step.stage}] output pipe still open after kill")
                partial = e.output
            elapsed = time.monotonic() - t0
            logger.warning(f"[{step.stage}] timed out after {step.timeout}s")
            output = _decode(partial)
            output += f"\ncommand timed out after {step.timeout} seconds"
            return VerificationOutcome(
                success=False,
                output=output,
                command=step.command,
                exit_code=proc.returncode,
                timed_out=True,
                duration_s=elapsed,
            )

        elapsed = time.monotonic() - t0
        output = _decode(out)
        success = proc.returncode == 0
        logger.info(
            f"[{step.stage}] exit={proc.returncode}, "
            f"time={elapsed:.1f}s, output={len(output)} chars"
        )
        return VerificationOutcome(
            success=success,
            output=output,
            command=step.command,
            exit_code=proc.returncode,
            duration_s=elapsed,
        )

    @staticmethod
    def _kill_group(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.warning(f"Failed to kill process group {proc.pid}: {e}")
            proc.kill()
