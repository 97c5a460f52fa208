"""Catalog of MCP server types the web app can offer to launch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tether.placeholders import find_placeholders


@dataclass(frozen=True)
class ServerDescriptor:
    id: str
    name: str
    description: str
    homepage: str
    example_path: str
    example_args: tuple[str, ...] = ()

    @property
    def required_secrets(self) -> list[str]:
        return find_placeholders(self.example_args)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "homepage": self.homepage,
            "examplePath": self.example_path,
            "exampleArgs": list(self.example_args),
            "requiredSecrets": self.required_secrets,
        }


SERVERS: tuple[ServerDescriptor, ...] = (
    ServerDescriptor(
        id="filesystem",
        name="Filesystem",
        description="Access local files via MCP",
        homepage="https://github.com/modelcontextprotocol/server-filesystem",
        example_path="npx -y @modelcontextprotocol/server-filesystem",
        example_args=("--root", "."),
    ),
    ServerDescriptor(
        id="github-pr",
        name="GitHub PR helper",
        description="Interact with GitHub pull requests",
        homepage="https://github.com/modelcontextprotocol",
        example_path="npx -y mcp-server-github-pr",
        example_args=("--token", "{{SECRET:GITHUB_TOKEN}}"),
    ),
    ServerDescriptor(
        id="slack",
        name="Slack poster",
        description="Send messages to Slack channels",
        homepage="https://github.com/modelcontextprotocol",
        example_path="npx -y mcp-server-slack",
        example_args=("--token", "{{SECRET:SLACK_TOKEN}}"),
    ),
    ServerDescriptor(
        id="http",
        name="HTTP requester",
        description="Perform HTTP requests via MCP",
        homepage="https://github.com/modelcontextprotocol",
        example_path="npx -y mcp-server-http",
    ),
)


def list_servers() -> list[dict[str, Any]]:
    return [server.to_dict() for server in SERVERS]


def get_server(server_id: str) -> ServerDescriptor:
    """Return the descriptor for *server_id*. Raises ``KeyError``."""
    for server in SERVERS:
        if server.id == server_id:
            return server
    raise KeyError(server_id)
