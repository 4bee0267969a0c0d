"""
PanelForge Agents

Beat sequencing and prompt compilation.
"""

from .beat_sequencer import (
    Beat,
    BeatSequencer,
    BeatsParsed,
    BeatsMalformed,
    parse_raw_beats,
)
from .prompt_compiler import PromptCompiler, CompiledPrompt, CompressionReport

__all__ = [
    'Beat',
    'BeatSequencer',
    'BeatsParsed',
    'BeatsMalformed',
    'parse_raw_beats',
    'PromptCompiler',
    'CompiledPrompt',
    'CompressionReport',
]
