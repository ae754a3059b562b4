"""Tests for prompt context handling and code extraction."""

import pytest

from orchestrator.context import (
    KIND_DIAGNOSTIC,
    Context,
    extract_code,
    tail_lines,
)
from orchestrator.errors import ExtractionError


def test_context_is_immutable():
    base = Context.seeded("Write me a protobufs file")
    extended = base.open_fence("protobuf")
    assert len(base) == 1
    assert len(extended) == 2
    assert base.render() == "Write me a protobufs file"
    assert extended.render() == "Write me a protobufs file```protobuf\n"


def test_branches_do_not_alias():
    base = Context.seeded("prompt").open_fence("go")
    failed = base.with_failure("package main", "undefined: foo")
    passed = base.with_success("package main")
    assert "undefined: foo" not in passed.render()
    assert "Great. That worked." not in failed.render()


def test_failure_block_layout():
    ctx = Context.seeded("P").open_fence("go").with_failure("CODE", "ERR")
    assert ctx.render() == (
        "P```go\nCODE```\n\nThat code didn't work.\n\nIt got an error:\n\n```\nERR```"
        "\n\nWrite a version that fixes that error.\n"
    )
    assert [s.text for s in ctx.of_kind(KIND_DIAGNOSTIC)] == ["ERR"]


def test_success_block_layout():
    ctx = Context.seeded("P").open_fence("go").with_success("CODE")
    assert ctx.render() == (
        "P```go\n\n\nCODE\n\n```\n\nGreat. That worked. Let's move on to the next step.\n\n"
    )


def test_tail_lines():
    text = "\n".join(str(i) for i in range(100))
    assert tail_lines(text, 3) == "97\n98\n99"
    assert tail_lines("short", 25) == "short"
    assert tail_lines(text, 0) == ""


@pytest.mark.parametrize("raw, expected", [
    ("package main\n", "package main"),
    ("```go\npackage main\n```", "package main"),
    ("```\npackage main\n```", "package main"),
    ("```golang\npackage main\n", "package main"),
    ("  package main\n```\nThis server echoes requests.", "package main"),
    ("\n\n```go\r\npackage main\r\n```", "package main"),
])
def test_extract_code(raw, expected):
    assert extract_code(raw, "go", ("golang",)) == expected


@pytest.mark.parametrize("raw", [
    "",
    "   \n\t",
    "```go\n```",
    "```\n\n",
    "```python\nprint('hi')\n```",
])
def test_extract_code_rejects(raw):
    with pytest.raises(ExtractionError):
        extract_code(raw, "go", ("golang",))


def test_extract_keeps_inner_content_exact():
    body = 'syntax = "proto3";\n\nservice Echo {\n  rpc Echo(Req) returns (Resp);\n}'
    assert extract_code(body + "\n", "protobuf") == body
