"""Detection tables and renderers for smart context generation."""

from dataclasses import dataclass, field


@dataclass
class DetectedStack:
    languages: list[str] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)
    package_manager: str | None = None
    test_framework: str | None = None
    build_tool: str | None = None


@dataclass
class DetectedCommands:
    dev: str | None = None
    build: str | None = None
    test: str | None = None
    lint: str | None = None
    start: str | None = None


@dataclass
class DetectedStructure:
    is_monorepo: bool = False
    has_docker: bool = False
    has_cicd: bool = False
    source_directories: list[str] = field(default_factory=list)
    config_files: list[str] = field(default_factory=list)


@dataclass
class SampleFile:
    path: str
    content: str


@dataclass
class AnalysisResult:
    project_name: str
    stack: DetectedStack
    commands: DetectedCommands
    structure: DetectedStructure
    existing_context: str | None = None
    ai_insights: str | None = None


# package.json dependency -> (display name, category)
FRAMEWORK_PATTERNS: dict[str, tuple[str, str]] = {
    # JavaScript/TypeScript frameworks
    "next": ("Next.js", "frontend"),
    "react": ("React", "frontend"),
    "vue": ("Vue.js", "frontend"),
    "angular": ("Angular", "frontend"),
    "svelte": ("Svelte", "frontend"),
    "express": ("Express.js", "backend"),
    "fastify": ("Fastify", "backend"),
    "nestjs": ("NestJS", "backend"),
    "@nestjs/core": ("NestJS", "backend"),
    "hono": ("Hono", "backend"),
    "koa": ("Koa", "backend"),
    # Testing
    "vitest": ("Vitest", "testing"),
    "jest": ("Jest", "testing"),
    "mocha": ("Mocha", "testing"),
    "playwright": ("Playwright", "testing"),
    "cypress": ("Cypress", "testing"),
    # Build tools
    "vite": ("Vite", "build"),
    "webpack": ("Webpack", "build"),
    "esbuild": ("esbuild", "build"),
    "turbo": ("Turborepo", "build"),
    # ORM/Database
    "prisma": ("Prisma", "database"),
    "drizzle": ("Drizzle ORM", "database"),
    "drizzle-orm": ("Drizzle ORM", "database"),
    "typeorm": ("TypeORM", "database"),
    "mongoose": ("Mongoose", "database"),
    # State management
    "zustand": ("Zustand", "state"),
    "jotai": ("Jotai", "state"),
    "redux": ("Redux", "state"),
    "@tanstack/react-query": ("TanStack Query", "data"),
    # UI
    "tailwindcss": ("Tailwind CSS", "styling"),
    "@radix-ui/react-dialog": ("Radix UI", "ui"),
    "shadcn-ui": ("shadcn/ui", "ui"),
}

# Substring of requirements.txt / pyproject.toml -> (display name, category)
PYTHON_FRAMEWORK_PATTERNS: dict[str, tuple[str, str]] = {
    "django": ("Django", "backend"),
    "flask": ("Flask", "backend"),
    "fastapi": ("FastAPI", "backend"),
    "pytest": ("pytest", "testing"),
    "sqlalchemy": ("SQLAlchemy", "database"),
    "celery": ("Celery", "task-queue"),
    "pandas": ("pandas", "data"),
    "numpy": ("NumPy", "data"),
    "tensorflow": ("TensorFlow", "ml"),
    "pytorch": ("PyTorch", "ml"),
    "torch": ("PyTorch", "ml"),
}


def generate_claude_md_content(analysis: AnalysisResult) -> str:
    """Render the analysis as a CLAUDE.md document."""
    sections = [f"# {analysis.project_name}"]

    stack = analysis.stack
    stack_lines = []
    if stack.languages:
        stack_lines.append(f"- **Languages**: {', '.join(stack.languages)}")
    if stack.frameworks:
        stack_lines.append(f"- **Frameworks**: {', '.join(stack.frameworks)}")
    if stack.package_manager:
        stack_lines.append(f"- **Package Manager**: {stack.package_manager}")
    if stack.test_framework:
        stack_lines.append(f"- **Testing**: {stack.test_framework}")
    if stack.build_tool:
        stack_lines.append(f"- **Build Tool**: {stack.build_tool}")
    if stack_lines:
        sections.append("## Tech Stack\n" + "\n".join(stack_lines))

    structure = analysis.structure
    structure_lines = []
    if structure.is_monorepo:
        structure_lines.append("- This is a **monorepo** project")
    if structure.source_directories:
        dirs = ", ".join(f"`{d}`" for d in structure.source_directories)
        structure_lines.append(f"- **Source directories**: {dirs}")
    if structure.has_docker:
        structure_lines.append("- Docker configuration available")
    if structure.has_cicd:
        structure_lines.append("- CI/CD workflows configured")
    if structure_lines:
        sections.append("## Project Structure\n" + "\n".join(structure_lines))

    commands = analysis.commands
    command_lines = []
    for label, command in (
        ("Development", commands.dev),
        ("Build", commands.build),
        ("Test", commands.test),
        ("Lint", commands.lint),
        ("Start", commands.start),
    ):
        if command:
            command_lines.append(f"- **{label}**: `{command}`")
    if command_lines:
        sections.append("## Key Commands\n" + "\n".join(command_lines))

    if analysis.ai_insights:
        sections.append(f"## Conventions & Patterns\n{analysis.ai_insights}")

    if analysis.existing_context:
        sections.append(
            "## Repository Context\n\n"
            "*The following context was found in the repository:*\n\n"
            f"{analysis.existing_context}"
        )

    return "\n\n".join(sections)


def get_ai_analysis_prompt(sample_files: list[SampleFile], stack: DetectedStack) -> str:
    """Build the prompt asking a model for codebase conventions."""
    file_list = "\n\n".join(f"### {f.path}\n```\n{f.content}\n```" for f in sample_files)
    project_kind = ", ".join(stack.frameworks) or ", ".join(stack.languages)

    return f"""Analyze the following code samples from a {project_kind} project and identify coding conventions, patterns, and best practices.

## Detected Tech Stack
- Languages: {", ".join(stack.languages) or "Unknown"}
- Frameworks: {", ".join(stack.frameworks) or "None detected"}
- Package Manager: {stack.package_manager or "Unknown"}

## Code Samples
{file_list}

## Instructions
Based on these code samples, provide a concise summary of:
1. **Naming conventions** (variables, functions, files)
2. **Code organization patterns** (how code is structured)
3. **Error handling approach**
4. **Testing patterns** (if test files are included)
5. **Any project-specific conventions** that should be followed

Keep the response focused and actionable - these will be instructions for an AI coding assistant.
Format as bullet points, not numbered lists. Be concise (max 10-15 bullet points total).
Do not include generic advice - only patterns specific to this codebase."""
