"""Repository analysis that produces smart context documents."""

from terragon_sandbox.analysis.analyzer import (
    AnalysisStep,
    ProgressCallback,
    analyze_codebase,
    detect_commands,
    detect_stack,
    detect_structure,
    get_ai_insights,
    read_existing_context,
    sample_key_files,
)
from terragon_sandbox.analysis.templates import (
    AnalysisResult,
    DetectedCommands,
    DetectedStack,
    DetectedStructure,
    SampleFile,
    generate_claude_md_content,
    get_ai_analysis_prompt,
)

__all__ = [
    "AnalysisResult",
    "AnalysisStep",
    "DetectedCommands",
    "DetectedStack",
    "DetectedStructure",
    "ProgressCallback",
    "SampleFile",
    "analyze_codebase",
    "detect_commands",
    "detect_stack",
    "detect_structure",
    "generate_claude_md_content",
    "get_ai_analysis_prompt",
    "get_ai_insights",
    "read_existing_context",
    "sample_key_files",
]
