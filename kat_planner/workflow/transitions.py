"""Stage transition graph for planning sessions.

The graph is data: each stage maps to the stages immediately reachable from
it. ``questioning`` is entered only by creating a session and ``development``
has no outgoing edges.

    questioning      -> refining
    refining         -> document_review
    document_review  -> final_approval, refining (revision requests only)
    final_approval   -> development
"""

from dataclasses import dataclass, field

from kat_planner.config import Stage
from kat_planner.errors import InvalidTransitionError
from kat_planner.workflow.stage_registry import get_stage_registry

ENTRY_STAGE = Stage.QUESTIONING

STAGE_GRAPH: dict[Stage, tuple[Stage, ...]] = {
    Stage.QUESTIONING: (Stage.REFINING,),
    Stage.REFINING: (Stage.DOCUMENT_REVIEW,),
    Stage.DOCUMENT_REVIEW: (Stage.FINAL_APPROVAL, Stage.REFINING),
    Stage.FINAL_APPROVAL: (Stage.DEVELOPMENT,),
    Stage.DEVELOPMENT: (),
}

# Backward edges that require an explicit revision request
REVISION_EDGES: frozenset[tuple[Stage, Stage]] = frozenset(
    {(Stage.DOCUMENT_REVIEW, Stage.REFINING)}
)


def next_stages(stage: Stage, include_revisions: bool = True) -> list[Stage]:
    """Stages reachable in one step from ``stage``, in graph order."""
    return [
        target
        for target in STAGE_GRAPH[stage]
        if include_revisions or (stage, target) not in REVISION_EDGES
    ]


def is_terminal(stage: Stage) -> bool:
    """True when no transition leaves ``stage``."""
    return not STAGE_GRAPH[stage]


def can_transition(current: Stage, target: Stage, revision: bool = False) -> bool:
    """Check whether ``current -> target`` is a legal edge.

    Revision edges are legal only when ``revision`` is set.
    """
    if target not in STAGE_GRAPH[current]:
        return False
    if (current, target) in REVISION_EDGES:
        return revision
    return True


def validate_transition(current: Stage, target: Stage, revision: bool = False) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is legal."""
    if can_transition(current, target, revision=revision):
        return
    if is_terminal(current):
        reason = f"{current.value} is terminal"
    elif (current, target) in REVISION_EDGES:
        reason = "moving back requires an explicit revision request"
    elif target == ENTRY_STAGE:
        reason = f"{ENTRY_STAGE.value} is only entered by creating a new session"
    else:
        allowed = ", ".join(s.value for s in next_stages(current, include_revisions=False))
        reason = f"allowed next: {allowed}"
    raise InvalidTransitionError(current, target, reason)


def reachable_from(stage: Stage) -> set[Stage]:
    """All stages reachable from ``stage`` (including itself)."""
    seen = {stage}
    frontier = [stage]
    while frontier:
        for target in STAGE_GRAPH[frontier.pop()]:
            if target not in seen:
                seen.add(target)
                frontier.append(target)
    return seen


@dataclass
class SequenceValidation:
    """Result of checking an ordered list of stage calls.

    Attributes:
        valid: Whether every step follows a legal edge
        errors: One message per illegal or unknown step
        next_valid_stages: Call names legal after the last valid step
        final_stage: Stage reached by the last valid step, if any
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    next_valid_stages: list[str] = field(default_factory=list)
    final_stage: Stage | None = None


def validate_sequence(stage_names: list[str]) -> SequenceValidation:
    """Validate a sequence of stage calls made against one session.

    The first call must create the session. Revision steps
    (document_review -> refining) are accepted in a sequence since a
    sequence of names cannot carry the revision flag itself.

    Args:
        stage_names: Call names, stage values, or aliases in call order

    Returns:
        SequenceValidation describing the sequence
    """
    registry = get_stage_registry()
    errors: list[str] = []
    current: Stage | None = None

    for index, name in enumerate(stage_names, start=1):
        meta = registry.resolve_safe(name)
        if meta is None:
            errors.append(f"Step {index}: unknown stage '{name}'")
            continue
        target = meta.stage
        if current is None:
            if target != ENTRY_STAGE:
                errors.append(
                    f"Step {index}: '{name}' requires an existing session; "
                    f"start with '{registry.get(ENTRY_STAGE).call_name}'"
                )
                continue
            current = target
            continue
        if not can_transition(current, target, revision=True):
            errors.append(
                f"Step {index}: cannot move from {current.value} to {target.value}"
            )
            continue
        current = target

    if current is None:
        next_valid = [registry.get(ENTRY_STAGE).call_name]
    else:
        next_valid = [registry.get(s).call_name for s in next_stages(current)]

    return SequenceValidation(
        valid=not errors,
        errors=errors,
        next_valid_stages=next_valid,
        final_stage=current,
    )
