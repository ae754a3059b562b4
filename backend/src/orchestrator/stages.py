"""Stage definitions for the generation pipeline.

Stages form a closed, totally ordered enumeration. Every non-terminal stage
owns one artifact, the content-type tag its code block is fenced with, the
shell command that verifies it and whether the quality gate applies.
"""

import platform
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from . import prompts

# Imports in generated servers whose docs are too noisy to be worth the tokens
DOC_SKIP_PATTERNS = ("protobuf", "logrus", "grpc", "spew")


class Stage(str, Enum):
    NOT_STARTED = "not_started"
    INTERFACE_DEFINITION = "interface_definition"
    SERVER_IMPLEMENTATION = "server_implementation"
    CONTAINER_BUILD = "container_build"
    USAGE_EXAMPLE = "usage_example"
    DONE = "done"

    @property
    def order(self) -> int:
        return _ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is Stage.DONE


_ORDER = list(Stage)


PromptBuilder = Callable[..., str]


@dataclass(frozen=True)
class StageSpec:
    """Everything the pipeline needs to run one stage."""

    stage: Stage
    artifact: str
    tag: str
    command: str
    build_prompt: PromptBuilder
    aliases: Tuple[str, ...] = ()
    quality_gate: bool = False
    exclusive: bool = False
    executable: bool = False

    def artifact_path(self, name: str) -> str:
        return self.artifact.format(name=name)

    def render_command(self, name: str, template: Optional[str] = None) -> str:
        return (template or self.command).format(name=name, artifact=self.artifact_path(name))


STAGE_SPECS: Dict[Stage, StageSpec] = {
    Stage.INTERFACE_DEFINITION: StageSpec(
        stage=Stage.INTERFACE_DEFINITION,
        artifact="protobufs/{name}.proto",
        tag="protobuf",
        aliases=("proto", "proto3"),
        command="protoc -I=. --go_out=. --go-grpc_out=. {artifact}",
        build_prompt=prompts.interface_prompt,
    ),
    Stage.SERVER_IMPLEMENTATION: StageSpec(
        stage=Stage.SERVER_IMPLEMENTATION,
        artifact="server/main.go",
        tag="go",
        aliases=("golang",),
        command="go get ./... && go build -o /tmp/{name}-server ./server",
        build_prompt=prompts.server_prompt,
        quality_gate=True,
    ),
    Stage.CONTAINER_BUILD: StageSpec(
        stage=Stage.CONTAINER_BUILD,
        artifact="Dockerfile",
        tag="dockerfile",
        aliases=("docker",),
        command="docker build -t {name} .",
        build_prompt=prompts.container_prompt,
        exclusive=True,
    ),
    Stage.USAGE_EXAMPLE: StageSpec(
        stage=Stage.USAGE_EXAMPLE,
        artifact="example-client-call.sh",
        tag="bash",
        aliases=("sh", "shell"),
        command="bash -n {artifact}",
        build_prompt=prompts.usage_prompt,
        executable=True,
    ),
}


def container_build_command(platform_setting: str = "auto") -> str:
    """Pick the image build command for this host.

    ``auto`` cross-builds for linux/amd64 on Apple silicon and builds
    natively everywhere else. Any other non-empty value except ``native`` is
    taken as an explicit buildx platform.
    """
    if platform_setting == "auto":
        if platform.system() == "Darwin" and platform.machine().lower() in ("arm64", "aarch64"):
            return "docker buildx build --platform linux/amd64 -t {name} ."
        return "docker build -t {name} ."
    if not platform_setting or platform_setting == "native":
        return "docker build -t {name} ."
    return f"docker buildx build --platform {platform_setting} -t {{name}} ."


def resolve_stage_sequence(names: Sequence[str]) -> List[Stage]:
    """Turn configured stage names into the run order, ending at DONE.

    Raises:
        ValueError: If a name is unknown, terminal, repeated or out of order,
            or if no stage is configured.
    """
    if not names:
        raise ValueError("At least one pipeline stage must be configured")

    sequence: List[Stage] = []
    for name in names:
        try:
            stage = Stage(name)
        except ValueError:
            raise ValueError(f"Unknown pipeline stage '{name}'")
        if stage not in STAGE_SPECS:
            raise ValueError(f"Stage '{name}' has no artifact and cannot be configured")
        if sequence and stage.order <= sequence[-1].order:
            raise ValueError(f"Stage '{name}' is out of order or repeated")
        sequence.append(stage)

    sequence.append(Stage.DONE)
    return sequence


def next_stage(sequence: Sequence[Stage], current: Stage) -> Stage:
    """The stage following ``current`` in ``sequence``.

    NOT_STARTED is followed by the first configured stage.

    Raises:
        ValueError: If ``current`` is terminal or not part of the sequence.
    """
    if current is Stage.NOT_STARTED:
        return sequence[0]
    if current.is_terminal:
        raise ValueError("DONE has no successor")
    try:
        index = list(sequence).index(current)
    except ValueError:
        raise ValueError(f"Stage {current.value} is not in the configured sequence")
    return sequence[index + 1]


def command_templates(commands: Mapping[str, str], platform_setting: str = "auto") -> Dict[Stage, str]:
    """Verification command templates per stage, with configured overrides."""
    templates = {stage: spec.command for stage, spec in STAGE_SPECS.items()}
    templates[Stage.CONTAINER_BUILD] = container_build_command(platform_setting)
    for name, template in commands.items():
        templates[Stage(name)] = template
    return templates
