"""Tests for the per-task artifact store."""

import pytest

from artifacts.store import ArtifactStore, ArtifactStoreError, sanitize_name
from conftest import requires_git


@pytest.mark.parametrize("raw, expected", [
    ("Echo Service", "echo_service"),
    ("  url-shortener  ", "url-shortener"),
    ("Résumé/Parser!", "rsumparser"),
    ("v1.2 api", "v1.2_api"),
])
def test_sanitize_name(raw, expected):
    assert sanitize_name(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "!!!", ".."])
def test_sanitize_name_rejects_empty(raw):
    with pytest.raises(ValueError):
        sanitize_name(raw)


@requires_git
def test_initialize_scaffold(tmp_path):
    store = ArtifactStore(tmp_path, network="seedlings")
    root = store.initialize("echo")

    assert root == tmp_path / "echo"
    for rel in ["go.mod", "protobufs/echo.proto", "server/main.go", "client/main.go",
                "Dockerfile", "docker-compose.yaml", ".gitignore"]:
        assert (root / rel).exists(), rel
    assert "module echo" in (root / "go.mod").read_text()
    assert "seedlings" in (root / "docker-compose.yaml").read_text()
    assert store.history("echo") == ["seedling scaffold"]


@requires_git
def test_initialize_is_idempotent(tmp_path):
    store = ArtifactStore(tmp_path)
    store.initialize("echo")
    store.write_artifact("echo", "server/main.go", "package main\n")
    store.commit("echo", "server")
    store.initialize("echo")

    assert store.read_artifact("echo", "server/main.go") == "package main\n"
    assert store.history("echo") == ["server", "seedling scaffold"]


@requires_git
def test_commit_only_when_dirty(tmp_path):
    store = ArtifactStore(tmp_path)
    store.initialize("echo")

    store.write_artifact("echo", "Dockerfile", "FROM scratch")
    assert store.commit("echo", "container_build: Dockerfile") is True
    assert store.commit("echo", "container_build: Dockerfile") is False

    store.write_artifact("echo", "Dockerfile", "FROM scratch")
    assert store.commit("echo", "again") is False
    assert store.history("echo")[0] == "container_build: Dockerfile"


@requires_git
def test_tasks_have_separate_histories(tmp_path):
    store = ArtifactStore(tmp_path)
    store.initialize("one")
    store.initialize("two")
    store.write_artifact("one", "Dockerfile", "FROM scratch")
    store.commit("one", "one only")

    assert store.history("one")[0] == "one only"
    assert store.history("two") == ["seedling scaffold"]


def test_round_trip_is_byte_identical(tmp_path):
    store = ArtifactStore(tmp_path)
    (tmp_path / "echo").mkdir()
    content = "line one\r\nline two\n\ttabbed\n"
    store.write_artifact("echo", "server/main.go", content)

    assert store.read_artifact("echo", "server/main.go") == content
    assert (tmp_path / "echo" / "server" / "main.go").read_bytes() == content.encode()


def test_executable_artifact(tmp_path):
    store = ArtifactStore(tmp_path)
    (tmp_path / "echo").mkdir()
    path = store.write_artifact("echo", "example-client-call.sh", "curl localhost", executable=True)
    assert path.stat().st_mode & 0o777 == 0o755


def test_write_requires_tree(tmp_path):
    store = ArtifactStore(tmp_path)
    with pytest.raises(ArtifactStoreError):
        store.write_artifact("missing", "Dockerfile", "FROM scratch")


def test_paths_cannot_escape_tree(tmp_path):
    store = ArtifactStore(tmp_path / "repos")
    (tmp_path / "repos" / "echo").mkdir(parents=True)
    with pytest.raises(ArtifactStoreError):
        store.write_artifact("echo", "../../outside.txt", "nope")


def test_ensure_available_with_missing_git(tmp_path):
    store = ArtifactStore(tmp_path, git_binary="definitely-not-git")
    with pytest.raises(ArtifactStoreError):
        store.ensure_available()
