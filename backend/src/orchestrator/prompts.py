"""Prompt templates for each generation stage.

Builders are called once per stage entry. Retries reuse the context they
produced, so anything expensive here (parsing protoc output, reading the
server source) happens at most once per stage.
"""

import logging
import platform
from pathlib import Path
from typing import List

from utils.go_source import extract_type_definitions_from_file

logger = logging.getLogger(__name__)

INTERFACE_PROMPT = """
Write me a protobufs file for a gRPC method that {description}

Make sure to start it with lines like:

syntax = "proto3";
option go_package = "./protobufs";

The file will be called {name}.proto. Do not override any of my file names.

My directory layout is:

$ ls .
Dockerfile          client              docker-compose.yaml go.mod              protobufs           server

My go.mod is:

module {name}

go 1.19

There are some arguments and variations that a user will be likely to request.
Make sure to include them. Think about it like a product manager for a developer experience
-- what are people likely to want from a service that does {description}?

"""

SERVER_PROMPT = """
Now write a server implementation for the service method(s).

Here are some instructions:

1. Make sure it's an actual production implementation of the service. Implement
   everything. Don't leave anything out.
2. Use external libraries, packages, and binaries if needed.
3. Assume you are running in a Docker container (Linux). This will
   run on Debian, so make sure it's compatible with Debian (Bookworm).
   This should be oriented at processor architecture {goarch}.
4. Make the gRPC service listen on port 8000, with insecure connection
   settings. In the same file, also include an HTTP server that will listen on
   port 8001, take in JSON equivalent to the gRPC call, and call the equivalent
   gRPC server method.
5. Log information about each request to the HTTP server with logrus. Use logrus.WithField
   to include information about the request, including relevant args, method name, duration etc.
6. Make sure to go the gRPC Serve() in a goroutine, and then block on the HTTP server.

Think step by step. If you want to provide commentary, do it in comments.

Actually implement everything as if it were production ready.

Make sure to check your imports. Double check those imports.

Some of the generated protobuf code looks like this:

{protobuf_defs}

And the gRPC:

{grpc_defs}
"""

CONTAINER_PROMPT = """
Now write a Dockerfile (multi-stage build) to build and run your server.

Here is an example:

FROM debian:bookworm-slim AS builder

RUN apt-get update && apt-get install -y --no-install-recommends \\
  ca-certificates \\
  git \\
  golang-go \\
  <other_pkgs>
COPY . /app
WORKDIR /app
RUN go get ./...
RUN go build -o /tmp/svc ./server

FROM debian:bookworm-slim

RUN apt-get update && apt-get install -y --no-install-recommends \\
  <package_1> \\
  <package_2>
COPY --from=builder /tmp/svc /bin/svc
EXPOSE 8000
EXPOSE 8001
CMD ["/bin/svc"]

Make sure to install any external libraries, packages, and binaries you need.

Make sure to include this line:

RUN go get ./...

Think step by step -- what's the best way to build the file?

Write the code. Write only the code.
"""

USAGE_PROMPT = """
Now write me a shell script with a example client call with curl to the HTTP
service. which is running on localhost:$(docker inspect -f '{{{{ (index .NetworkSettings.Ports "8001/tcp" 0).HostPort }}}}' {name}).

Remember, the server code is:
```go
{server_source}```"""

DOCS_HEADER = "\nHere is some documentation that might be useful:\n"

_GOARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "armv7l": "arm",
}


def host_goarch() -> str:
    """Go's name for the host processor architecture."""
    machine = platform.machine().lower()
    return _GOARCH.get(machine, machine)


def _generated_definitions(tree: Path, filename: str) -> List[str]:
    """Struct and interface types from a protoc output file.

    protoc places output according to the proto's go_package, so fall back to
    searching the tree when the file is not where the prompt asked for it.
    """
    path = tree / "protobufs" / filename
    if not path.exists():
        matches = sorted(tree.rglob(filename))
        if not matches:
            logger.warning(f"No {filename} under {tree}, prompt will omit its types")
            return []
        path = matches[0]
    return extract_type_definitions_from_file(path)


def interface_prompt(name: str, description: str, tree: Path) -> str:
    return INTERFACE_PROMPT.format(name=name, description=description)


def server_prompt(name: str, description: str, tree: Path) -> str:
    protobuf_defs = _generated_definitions(tree, f"{name}.pb.go")
    grpc_defs = _generated_definitions(tree, f"{name}_grpc.pb.go")
    return SERVER_PROMPT.format(
        goarch=host_goarch(),
        protobuf_defs="\n".join(protobuf_defs),
        grpc_defs="\n".join(grpc_defs),
    )


def container_prompt(name: str, description: str, tree: Path) -> str:
    return CONTAINER_PROMPT


def usage_prompt(name: str, description: str, tree: Path) -> str:
    server_source = (tree / "server" / "main.go").read_text(encoding="utf-8")
    return USAGE_PROMPT.format(name=name, server_source=server_source)
