"""Planning workflow: stage registry, transition graph, orchestration.

The orchestrator and envelope builder are imported from their modules
directly; this package only re-exports the dependency-free pieces.
"""

from .stage_registry import (
    DEVELOPMENT_TOOL,
    INTERACTIVE_TOOL,
    StageMetadata,
    StageRegistry,
    get_stage_registry,
    resolve_stage,
)
from .transitions import (
    ENTRY_STAGE,
    STAGE_GRAPH,
    SequenceValidation,
    can_transition,
    is_terminal,
    next_stages,
    validate_sequence,
    validate_transition,
)

__all__ = [
    # Stage registry
    "StageRegistry",
    "StageMetadata",
    "get_stage_registry",
    "resolve_stage",
    "INTERACTIVE_TOOL",
    "DEVELOPMENT_TOOL",
    # Transition graph
    "ENTRY_STAGE",
    "STAGE_GRAPH",
    "SequenceValidation",
    "can_transition",
    "is_terminal",
    "next_stages",
    "validate_sequence",
    "validate_transition",
]
