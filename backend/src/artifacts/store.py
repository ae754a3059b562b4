"""Artifact Store - per-task working trees with git history.

Every task owns one directory under the workspace base path, named after the
sanitized task name. The directory is its own git repository, so concurrent
tasks never contend for a shared index. Every successful stage is committed.

The store writes what it is given, byte for byte, and only knows enough about
the generated project to lay down the initial scaffold the first stage
prompt describes.
"""

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r'[^a-z0-9_.-]')

# Subdirectories matching each stage's artifact category
STAGE_SUBDIRS = ("protobufs", "server", "client")

_GIT_IDENTITY = [
    "-c", "user.name=garden",
    "-c", "user.email=garden@localhost",
    "-c", "commit.gpgsign=false",
]

_SERVER_PLACEHOLDER = """package main

import "fmt"

func main() {
	fmt.Println("Welcome to seedling")
}
"""

_DOCKERFILE_PLACEHOLDER = """FROM debian:bookworm-slim
COPY . /app
"""

_GITIGNORE = """logs
"""


class ArtifactStoreError(Exception):
    """Raised when the artifact tree cannot be read, written or committed."""


def sanitize_name(name: str) -> str:
    """Reduce a free-text task name to a safe directory name.

    Surrounding whitespace is trimmed, inner spaces become underscores, the
    result is lowercased and anything outside ``[a-z0-9_.-]`` is dropped.

    Raises:
        ValueError: If nothing usable is left.
    """
    cleaned = name.strip().replace(" ", "_").lower()
    cleaned = _UNSAFE_CHARS_RE.sub("", cleaned)
    if not cleaned or set(cleaned) == {"."}:
        raise ValueError(f"Task name {name!r} has no filesystem-safe characters")
    return cleaned


class ArtifactStore:
    """Owns the on-disk artifact trees and their commit history."""

    def __init__(self, base_path: Path, network: str = "seedlings", git_binary: str = "git"):
        """Initialize the store.

        Args:
            base_path: Directory holding one subdirectory per task.
            network: Docker network the scaffolded compose file joins.
            git_binary: Name or path of the git executable.
        """
        self.base_path = Path(base_path)
        self.network = network
        self.git_binary = git_binary

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def task_dir(self, task_name: str) -> Path:
        return self.base_path / sanitize_name(task_name)

    def exists(self, task_name: str) -> bool:
        """Whether the task's artifact tree is present on disk."""
        return self.task_dir(task_name).is_dir()

    def _resolve(self, task_name: str, rel_path: str) -> Path:
        """Resolve ``rel_path`` inside the task tree.

        Raises:
            ArtifactStoreError: If the path escapes the task directory.
        """
        root = self.task_dir(task_name).resolve()
        target = (root / rel_path).resolve()
        try:
            target.relative_to(root)
        except ValueError:
            raise ArtifactStoreError(
                f"Path '{rel_path}' resolves outside task directory '{root}'"
            )
        return target

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def ensure_available(self) -> None:
        """Check that git works and the workspace root exists.

        Raises:
            ArtifactStoreError: If git is missing or unusable.
        """
        if shutil.which(self.git_binary) is None:
            raise ArtifactStoreError(f"'{self.git_binary}' not found on PATH")
        try:
            self._git(["--version"], cwd=None)
        except ArtifactStoreError as e:
            raise ArtifactStoreError(f"git is not usable: {e}") from e
        self.base_path.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Scaffold
    # ------------------------------------------------------------------

    def initialize(self, task_name: str) -> Path:
        """Create the task's tree with placeholder files and an initial commit.

        Safe to call again on a partially initialized tree: existing files are
        left alone and the commit is skipped if nothing changed.

        Returns:
            The task directory.
        """
        dirname = sanitize_name(task_name)
        root = self.task_dir(task_name)
        scaffold = {
            "go.mod": f"module {dirname}\n\ngo 1.19\n",
            f"protobufs/{dirname}.proto": 'syntax = "proto3";\n\noption go_package = ".";\n',
            "server/main.go": _SERVER_PLACEHOLDER,
            "client/main.go": _SERVER_PLACEHOLDER,
            "Dockerfile": _DOCKERFILE_PLACEHOLDER,
            "docker-compose.yaml": self._compose_file(dirname),
            ".gitignore": _GITIGNORE,
        }
        try:
            for subdir in STAGE_SUBDIRS:
                (root / subdir).mkdir(parents=True, exist_ok=True)
            for rel_path, content in scaffold.items():
                path = root / rel_path
                if not path.exists():
                    path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ArtifactStoreError(f"Cannot create tree for {task_name}: {e}") from e

        if not (root / ".git").exists():
            self._git(["init", "--quiet"], cwd=root)

        self.commit(task_name, "seedling scaffold")
        logger.info(f"Initialized artifact tree at {root}")
        return root

    def _compose_file(self, dirname: str) -> str:
        return (
            'version: "3.9"\n'
            "services:\n"
            f"  {dirname}:\n"
            f"    image: {dirname}\n"
            "    networks:\n"
            f"      - {self.network}\n"
            "    volumes:\n"
            "      - ../secrets:/secrets\n"
            "\n"
            "networks:\n"
            f"  {self.network}:\n"
            "    external: true\n"
        )

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def write_artifact(self, task_name: str, rel_path: str, content: str,
                       executable: bool = False) -> Path:
        """Write an artifact, replacing any previous version.

        Content is written exactly as given (no newline translation).

        Raises:
            ArtifactStoreError: If the task tree is missing or the write fails.
        """
        if not self.exists(task_name):
            raise ArtifactStoreError(f"Task directory missing: {self.task_dir(task_name)}")
        path = self._resolve(task_name, rel_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            if executable:
                os.chmod(path, 0o755)
        except OSError as e:
            raise ArtifactStoreError(f"Could not write {path}: {e}") from e
        return path

    def read_artifact(self, task_name: str, rel_path: str) -> str:
        """Read an artifact back exactly as stored.

        Raises:
            ArtifactStoreError: If the file cannot be read.
        """
        path = self._resolve(task_name, rel_path)
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except OSError as e:
            raise ArtifactStoreError(f"Could not read {path}: {e}") from e

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def commit(self, task_name: str, message: str) -> bool:
        """Stage everything in the task tree and commit it.

        Returns:
            True if a commit was made, False if the tree was already clean.

        Raises:
            ArtifactStoreError: If the tree is missing or git fails.
        """
        root = self.task_dir(task_name)
        if not root.is_dir():
            raise ArtifactStoreError(f"Task directory missing: {root}")
        self._git(["add", "-A"], cwd=root)
        if not self._git(["status", "--porcelain"], cwd=root).strip():
            logger.debug(f"Nothing to commit in {root}")
            return False
        self._git([*_GIT_IDENTITY, "commit", "--quiet", "-m", message], cwd=root)
        return True

    def history(self, task_name: str) -> List[str]:
        """Commit subjects, newest first."""
        out = self._git(["log", "--format=%s"], cwd=self.task_dir(task_name))
        return [line for line in out.splitlines() if line]

    def _git(self, args: List[str], cwd: Optional[Path]) -> str:
        try:
            proc = subprocess.run(
                [self.git_binary, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            output = (e.stderr or e.stdout or "").strip()
            raise ArtifactStoreError(f"git {' '.join(args)} failed: {output}") from e
        except OSError as e:
            raise ArtifactStoreError(f"git {' '.join(args)} could not start: {e}") from e
        return proc.stdout
