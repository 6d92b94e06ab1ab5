"""Smart context analysis of a repository checked out inside a sandbox.

Detects the tech stack, layout and scripts of the repository, collects any
existing agent context files, optionally asks a chat model for codebase
conventions, and renders everything as a CLAUDE.md document.
"""

import json
import posixpath
import shlex
from collections.abc import Awaitable, Callable
from typing import Any, Literal

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from terragon_sandbox.analysis.templates import (
    FRAMEWORK_PATTERNS,
    PYTHON_FRAMEWORK_PATTERNS,
    AnalysisResult,
    DetectedCommands,
    DetectedStack,
    DetectedStructure,
    SampleFile,
    generate_claude_md_content,
    get_ai_analysis_prompt,
)
from terragon_sandbox.core.errors import SandboxError
from terragon_sandbox.core.types import SandboxSession

logger = structlog.get_logger(__name__)

AnalysisStep = Literal["detecting", "reading", "analyzing", "generating", "complete"]
ProgressCallback = Callable[[AnalysisStep, str], Awaitable[None]]

FILE_PROBE_TIMEOUT_MS = 5000

MAX_TOTAL_SAMPLE_CHARS = 50000
PRIORITY_FILE_MAX_CHARS = 5000
SOURCE_FILE_MAX_CHARS = 3000
TEST_FILE_MAX_CHARS = 2000

LOCKFILES = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("package-lock.json", "npm"),
)

MONOREPO_MARKERS = ("pnpm-workspace.yaml", "lerna.json", "turbo.json")
DOCKER_MARKERS = ("Dockerfile", "docker-compose.yml", "docker-compose.yaml")
CI_FILE_MARKERS = (".gitlab-ci.yml", ".circleci/config.yml")
CI_DIR_MARKERS = (".github/workflows",)

COMMON_SOURCE_DIRS = (
    "src",
    "lib",
    "app",
    "apps",
    "packages",
    "components",
    "pages",
    "api",
    "server",
    "client",
    "test",
    "tests",
    "__tests__",
)

CONFIG_FILE_PATTERNS = (
    "tsconfig.json",
    "eslint.config.js",
    ".eslintrc.js",
    ".eslintrc.json",
    "prettier.config.js",
    ".prettierrc",
    "vitest.config.ts",
    "jest.config.js",
    "tailwind.config.js",
    "tailwind.config.ts",
    "next.config.js",
    "next.config.ts",
    "vite.config.ts",
)

EXISTING_CONTEXT_FILES = (
    "CLAUDE.md",
    "AGENTS.md",
    ".cursorrules",
    ".github/copilot-instructions.md",
)

SOURCE_FILE_PATTERNS = (
    "src/index.ts",
    "src/index.tsx",
    "src/main.ts",
    "src/main.tsx",
    "src/app.ts",
    "src/app.tsx",
    "app/page.tsx",
    "app/layout.tsx",
    "pages/index.tsx",
    "lib/index.ts",
    "src/lib/utils.ts",
)

TEST_FILE_PATTERNS = (
    "src/index.test.ts",
    "src/lib/utils.test.ts",
    "test/index.test.ts",
    "tests/index.test.ts",
)

SCRIPT_COMMANDS = ("dev", "build", "test", "lint", "start")


async def safe_read_file(session: SandboxSession, path: str) -> str | None:
    """Read a repository file, returning None if it cannot be read."""
    try:
        return await session.read_text_file(posixpath.join(session.repo_dir, path))
    except SandboxError:
        return None


async def _probe(session: SandboxSession, flag: str, path: str) -> bool:
    try:
        output = await session.run_command(
            f"test {flag} {shlex.quote(path)} && echo yes || true",
            cwd=session.repo_dir,
            timeout_ms=FILE_PROBE_TIMEOUT_MS,
        )
    except SandboxError:
        return False
    return output.strip() == "yes"


async def file_exists(session: SandboxSession, path: str) -> bool:
    return await _probe(session, "-f", path)


async def directory_exists(session: SandboxSession, path: str) -> bool:
    return await _probe(session, "-d", path)


def _parse_package_json(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse package.json", error=str(e))
        return None
    return parsed if isinstance(parsed, dict) else None


def _apply_pattern(stack: DetectedStack, name: str, category: str) -> None:
    if category == "testing":
        if stack.test_framework is None:
            stack.test_framework = name
    elif category == "build":
        if stack.build_tool is None:
            stack.build_tool = name
    elif name not in stack.frameworks:
        stack.frameworks.append(name)


async def detect_stack(session: SandboxSession, package_json: dict[str, Any] | None) -> DetectedStack:
    """Infer languages, frameworks and tooling from manifest files."""
    stack = DetectedStack()

    if package_json is not None:
        stack.languages.append("TypeScript/JavaScript")

        for lockfile, manager in LOCKFILES:
            if await file_exists(session, lockfile):
                stack.package_manager = manager
                break

        dependencies: dict[str, Any] = {
            **(package_json.get("dependencies") or {}),
            **(package_json.get("devDependencies") or {}),
        }
        for dependency, (name, category) in FRAMEWORK_PATTERNS.items():
            if dependency in dependencies:
                _apply_pattern(stack, name, category)

        if "typescript" in dependencies:
            stack.languages = ["TypeScript"]

    requirements = await safe_read_file(session, "requirements.txt")
    pyproject = await safe_read_file(session, "pyproject.toml")
    if requirements is not None or pyproject is not None:
        stack.languages.append("Python")
        if stack.package_manager is None:
            stack.package_manager = "pip"

        content = f"{requirements or ''}{pyproject or ''}".lower()
        for pattern, (name, category) in PYTHON_FRAMEWORK_PATTERNS.items():
            if pattern not in content:
                continue
            if category == "testing":
                if stack.test_framework is None:
                    stack.test_framework = name
            elif name not in stack.frameworks:
                stack.frameworks.append(name)

    if await file_exists(session, "go.mod"):
        stack.languages.append("Go")
        stack.package_manager = stack.package_manager or "go modules"

    if await file_exists(session, "Cargo.toml"):
        stack.languages.append("Rust")
        stack.package_manager = stack.package_manager or "cargo"

    if await file_exists(session, "Gemfile"):
        stack.languages.append("Ruby")
        stack.package_manager = stack.package_manager or "bundler"

    has_maven = await file_exists(session, "pom.xml")
    has_gradle = await file_exists(session, "build.gradle")
    if has_maven or has_gradle:
        stack.languages.append("Java")
        stack.package_manager = stack.package_manager or ("maven" if has_maven else "gradle")

    return stack


async def _any_exists(session: SandboxSession, files: tuple[str, ...], dirs: tuple[str, ...] = ()) -> bool:
    for path in dirs:
        if await directory_exists(session, path):
            return True
    for path in files:
        if await file_exists(session, path):
            return True
    return False


async def detect_structure(session: SandboxSession) -> DetectedStructure:
    structure = DetectedStructure()
    structure.is_monorepo = await _any_exists(session, MONOREPO_MARKERS)
    structure.has_docker = await _any_exists(session, DOCKER_MARKERS)
    structure.has_cicd = await _any_exists(session, CI_FILE_MARKERS, CI_DIR_MARKERS)

    for directory in COMMON_SOURCE_DIRS:
        if await directory_exists(session, directory):
            structure.source_directories.append(directory)

    for config_file in CONFIG_FILE_PATTERNS:
        if await file_exists(session, config_file):
            structure.config_files.append(config_file)

    return structure


def detect_commands(package_json: dict[str, Any] | None, package_manager: str | None) -> DetectedCommands:
    """Map well-known package.json scripts to runnable commands."""
    commands = DetectedCommands()
    if package_json is None:
        return commands

    scripts = package_json.get("scripts") or {}
    manager = package_manager or "npm"
    run = "npm run" if manager == "npm" else f"{manager} run"

    for script in SCRIPT_COMMANDS:
        if script in scripts:
            setattr(commands, script, f"{run} {script}")
    return commands


async def read_existing_context(session: SandboxSession) -> str | None:
    """Collect agent instruction files already present in the repository."""
    parts = []
    for path in EXISTING_CONTEXT_FILES:
        content = await safe_read_file(session, path)
        if content and content.strip():
            parts.append(f"### From `{path}`:\n{content.strip()}")
    return "\n\n".join(parts) if parts else None


def _truncate(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "\n... (truncated)"


async def sample_key_files(session: SandboxSession, structure: DetectedStructure) -> list[SampleFile]:
    """Pick representative files for model analysis within a character budget."""
    samples: list[SampleFile] = []
    total_chars = 0

    async def add(path: str, max_chars: int) -> bool:
        nonlocal total_chars
        if total_chars >= MAX_TOTAL_SAMPLE_CHARS:
            return False
        content = await safe_read_file(session, path)
        if content is None:
            return False
        truncated = _truncate(content, max_chars)
        samples.append(SampleFile(path=path, content=truncated))
        total_chars += len(truncated)
        return True

    priority_files = ["README.md", "package.json", "tsconfig.json"]
    priority_files.extend(f for f in structure.config_files if f not in priority_files)
    for path in priority_files:
        await add(path, PRIORITY_FILE_MAX_CHARS)

    for path in SOURCE_FILE_PATTERNS:
        await add(path, SOURCE_FILE_MAX_CHARS)

    for path in TEST_FILE_PATTERNS:
        if await add(path, TEST_FILE_MAX_CHARS):
            break

    return samples


async def get_ai_insights(
    llm: BaseChatModel,
    sample_files: list[SampleFile],
    stack: DetectedStack,
) -> str | None:
    """Ask the model for codebase conventions; None if the call fails."""
    prompt = get_ai_analysis_prompt(sample_files, stack)
    try:
        response = await llm.ainvoke([HumanMessage(content=prompt)])
    except Exception as e:
        logger.warning("AI analysis failed", error=str(e))
        return None

    content = response.content
    if isinstance(content, list):
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block) for block in content
        )
    content = content.strip()
    return content or None


async def analyze_codebase(
    session: SandboxSession,
    repo_full_name: str,
    on_progress: ProgressCallback,
    llm: BaseChatModel | None = None,
) -> str:
    """Analyze the checked-out repository and return CLAUDE.md content.

    Args:
        session: Live sandbox with the repository at ``session.repo_dir``
        repo_full_name: ``owner/name`` of the repository
        on_progress: Awaited with ``(step, message)`` as analysis proceeds
        llm: Chat model for convention analysis; skipped when None
    """
    log = logger.bind(sandbox_id=session.sandbox_id, repo=repo_full_name)
    project_name = repo_full_name.rsplit("/", 1)[-1]

    await on_progress("detecting", "Scanning for project manifest files...")
    package_json = _parse_package_json(await safe_read_file(session, "package.json"))
    stack = await detect_stack(session, package_json)

    await on_progress("detecting", "Analyzing project structure...")
    structure = await detect_structure(session)

    await on_progress("detecting", "Extracting commands from package.json...")
    commands = detect_commands(package_json, stack.package_manager)

    await on_progress("reading", "Looking for existing context files...")
    existing_context = await read_existing_context(session)

    ai_insights = None
    if llm is not None:
        await on_progress("analyzing", "Sampling key files for AI analysis...")
        sample_files = await sample_key_files(session, structure)
        if sample_files:
            await on_progress("analyzing", f"Analyzing {len(sample_files)} files with AI...")
            ai_insights = await get_ai_insights(llm, sample_files, stack)
    else:
        await on_progress("analyzing", "Skipping AI analysis (no API key available)")

    await on_progress("generating", "Generating smart context...")
    content = generate_claude_md_content(
        AnalysisResult(
            project_name=project_name,
            stack=stack,
            commands=commands,
            structure=structure,
            existing_context=existing_context,
            ai_insights=ai_insights,
        )
    )

    await on_progress("complete", "Analysis complete!")
    log.info(
        "Codebase analysis complete",
        languages=stack.languages,
        frameworks=stack.frameworks,
        has_ai_insights=ai_insights is not None,
    )
    return content
