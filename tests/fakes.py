"""In-memory sandbox fakes shared by the test suite."""

import posixpath
import shlex
from typing import Any

from terragon_sandbox.core.errors import SandboxFileNotFoundError
from terragon_sandbox.core.providers.base import BaseSandboxSession
from terragon_sandbox.core.types import CreateSandboxOptions


class FakeSandboxSession(BaseSandboxSession):
    """In-memory sandbox that records every command and file write.

    ``responses`` maps an exact command to its stdout, or to an exception
    instance to raise. ``test -f`` / ``test -d`` probes answer from
    ``files`` and ``directories``; readiness probes answer "ready".
    """

    sandbox_provider = "e2b"

    def __init__(self, sandbox_id: str = "sbx-1", *, repo_dir: str = "/root/repo", home_dir: str = "/root"):
        super().__init__(sandbox_id, repo_dir=repo_dir, home_dir=home_dir)
        self.files: dict[str, str] = {}
        self.directories: set[str] = set()
        self.commands: list[dict[str, Any]] = []
        self.background_commands: list[dict[str, Any]] = []
        self.responses: dict[str, Any] = {}
        self.daemon_log = ""
        self.shutdown_calls = 0
        self.shutdown_error: Exception | None = None
        self.hibernated = False
        self.extended = 0

    def add_repo_file(self, path: str, content: str) -> None:
        self.files[posixpath.join(self.repo_dir, path)] = content

    def add_repo_dir(self, path: str) -> None:
        self.directories.add(posixpath.join(self.repo_dir, path))

    @property
    def command_strings(self) -> list[str]:
        return [c["command"] for c in self.commands]

    def _probe(self, command: str, cwd: str) -> str | None:
        try:
            tokens = shlex.split(command)
        except ValueError:
            return None
        if len(tokens) < 3 or tokens[0] != "test":
            return None
        flag, path = tokens[1], tokens[2]
        full_path = path if posixpath.isabs(path) else posixpath.join(cwd, path)

        if flag == "-p":
            return "ready"
        if flag == "-f":
            found = full_path in self.files
        elif flag == "-d":
            prefix = full_path.rstrip("/") + "/"
            found = full_path in self.directories or any(p.startswith(prefix) for p in self.files)
        else:
            return None

        if found:
            return "yes"
        return "no" if "echo no" in command else ""

    async def _run_command(self, command, *, cwd, timeout_ms, env):
        self.commands.append({"command": command, "cwd": cwd, "timeout_ms": timeout_ms, "env": env})

        if command in self.responses:
            response = self.responses[command]
            if isinstance(response, Exception):
                raise response
            return response

        if command == "echo ready":
            return "ready\n"
        if command.startswith("tail -n"):
            return self.daemon_log

        probe = self._probe(command, cwd)
        if probe is not None:
            return probe + "\n" if probe else ""
        return ""

    async def _run_background_command(self, command, *, env):
        self.background_commands.append({"command": command, "env": env})

    async def _read_file(self, path):
        if path not in self.files:
            raise SandboxFileNotFoundError(f"File not found: {path}")
        return self.files[path]

    async def _write_file(self, path, content):
        self.files[path] = content

    async def _shutdown(self):
        self.shutdown_calls += 1
        if self.shutdown_error is not None:
            raise self.shutdown_error

    async def _hibernate(self):
        self.hibernated = True

    async def _extend_life(self):
        self.extended += 1


class FakeProvider:
    """Provider handing out ``FakeSandboxSession`` instances."""

    def __init__(self, name: str = "e2b", sizes: tuple[str, ...] = ("small", "large")):
        self.name = name
        self.sizes = sizes
        self.sessions: dict[str, FakeSandboxSession] = {}
        self.created: list[FakeSandboxSession] = []
        self.create_options: list[CreateSandboxOptions] = []

    def supports_size(self, size):
        return size in self.sizes

    async def create(self, options):
        session = FakeSandboxSession(f"{self.name}-sbx-{len(self.created) + 1}")
        session.sandbox_provider = self.name
        self.sessions[session.sandbox_id] = session
        self.created.append(session)
        self.create_options.append(options)
        return session

    async def get(self, sandbox_id):
        session = self.sessions.get(sandbox_id)
        if session is None or session.is_shut_down:
            return None
        return session

