"""Tests for the stage transition graph and sequence validation.

Covers:
- Legal and illegal single-step transitions
- The revision edge requires an explicit flag
- development is terminal, questioning is entry-only
- validate_sequence over call names and aliases
- Random walks never leave the graph
"""

import random

import pytest

from kat_planner.config import Stage
from kat_planner.errors import InvalidTransitionError
from kat_planner.workflow.transitions import (
    ENTRY_STAGE,
    STAGE_GRAPH,
    can_transition,
    is_terminal,
    next_stages,
    reachable_from,
    validate_sequence,
    validate_transition,
)

FORWARD = [
    (Stage.QUESTIONING, Stage.REFINING),
    (Stage.REFINING, Stage.DOCUMENT_REVIEW),
    (Stage.DOCUMENT_REVIEW, Stage.FINAL_APPROVAL),
    (Stage.FINAL_APPROVAL, Stage.DEVELOPMENT),
]


class TestGraph:
    def test_every_stage_has_an_entry(self):
        """STAGE_GRAPH has an entry for every stage."""
        assert set(STAGE_GRAPH) == set(Stage)

    @pytest.mark.parametrize("current,target", FORWARD)
    def test_forward_edges_legal(self, current, target):
        """Each forward edge is a legal transition."""
        assert can_transition(current, target)
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (Stage.QUESTIONING, Stage.DOCUMENT_REVIEW),
            (Stage.QUESTIONING, Stage.DEVELOPMENT),
            (Stage.REFINING, Stage.REFINING),
            (Stage.REFINING, Stage.FINAL_APPROVAL),
            (Stage.FINAL_APPROVAL, Stage.DOCUMENT_REVIEW),
            (Stage.DEVELOPMENT, Stage.DEVELOPMENT),
        ],
    )
    def test_illegal_edges_rejected(self, current, target):
        """Skips, self-edges and moves back are rejected."""
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.attempted == target

    def test_revision_edge_requires_flag(self):
        """document_review -> refining needs the revision flag."""
        assert not can_transition(Stage.DOCUMENT_REVIEW, Stage.REFINING)
        assert can_transition(Stage.DOCUMENT_REVIEW, Stage.REFINING, revision=True)
        with pytest.raises(InvalidTransitionError, match="revision"):
            validate_transition(Stage.DOCUMENT_REVIEW, Stage.REFINING)

    def test_revision_flag_does_not_open_other_edges(self):
        """The revision flag does not unlock other backward moves."""
        assert not can_transition(Stage.FINAL_APPROVAL, Stage.REFINING, revision=True)

    def test_development_is_terminal(self):
        """development has no outgoing edges."""
        assert is_terminal(Stage.DEVELOPMENT)
        assert next_stages(Stage.DEVELOPMENT) == []
        with pytest.raises(InvalidTransitionError, match="terminal"):
            validate_transition(Stage.DEVELOPMENT, Stage.DEVELOPMENT)

    def test_questioning_has_no_incoming_edges(self):
        """questioning is only entered by creating a session."""
        for targets in STAGE_GRAPH.values():
            assert ENTRY_STAGE not in targets

    def test_next_stages_without_revisions(self):
        """next_stages can leave out revision edges."""
        assert next_stages(Stage.DOCUMENT_REVIEW) == [Stage.FINAL_APPROVAL, Stage.REFINING]
        assert next_stages(Stage.DOCUMENT_REVIEW, include_revisions=False) == [
            Stage.FINAL_APPROVAL
        ]

    def test_every_stage_reachable_from_entry(self):
        """Every stage is reachable from the entry stage."""
        assert reachable_from(ENTRY_STAGE) == set(Stage)

    def test_error_message_names_both_stages(self):
        """InvalidTransitionError names the current and attempted stage."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(Stage.QUESTIONING, Stage.FINAL_APPROVAL)
        assert "questioning -> final_approval" in exc_info.value.message


class TestRandomWalk:
    """Any sequence of stage requests leaves a session on a legal path."""

    @pytest.mark.parametrize("seed", range(25))
    def test_random_requests_follow_graph(self, seed):
        """Random stage requests only ever move along graph edges."""
        rng = random.Random(seed)
        stage = ENTRY_STAGE
        visited = [stage]
        for _ in range(40):
            target = rng.choice(list(Stage))
            revision = rng.random() < 0.3
            try:
                validate_transition(stage, target, revision=revision)
            except InvalidTransitionError:
                assert not can_transition(stage, target, revision=revision)
                continue
            assert target in STAGE_GRAPH[stage]
            stage = target
            visited.append(stage)

        for previous, current in zip(visited, visited[1:], strict=False):
            assert current in STAGE_GRAPH[previous]
        assert visited.count(Stage.DEVELOPMENT) <= 1
        assert visited.count(Stage.QUESTIONING) == 1


class TestValidateSequence:
    def test_full_happy_path(self):
        """The full forward sequence is valid and ends in development."""
        result = validate_sequence(
            ["question", "refine", "document_review", "final_approval", "development"]
        )
        assert result.valid
        assert result.errors == []
        assert result.final_stage == Stage.DEVELOPMENT
        assert result.next_valid_stages == []

    def test_aliases_and_case(self):
        """validate_sequence accepts aliases in any case."""
        result = validate_sequence(["INITIAL", "refining", "Review", "approve", "start_development"])
        assert result.valid

    def test_revision_loop_accepted(self):
        """A review -> refine -> review loop is a valid sequence."""
        result = validate_sequence(
            ["question", "refine", "document_review", "refine", "document_review"]
        )
        assert result.valid
        assert result.next_valid_stages == ["final_approval", "refine"]

    def test_skipping_a_stage_is_reported(self):
        """A skipped stage is reported with its step number."""
        result = validate_sequence(["question", "document_review"])
        assert not result.valid
        assert len(result.errors) == 1
        assert "Step 2" in result.errors[0]
        assert result.final_stage == Stage.QUESTIONING
        assert result.next_valid_stages == ["refine"]

    def test_must_start_with_entry(self):
        """A sequence must start with the entry stage."""
        result = validate_sequence(["refine"])
        assert not result.valid
        assert "question" in result.errors[0]

    def test_unknown_stage_reported(self):
        """Unknown stage names are reported."""
        result = validate_sequence(["question", "deploy"])
        assert not result.valid
        assert "unknown stage 'deploy'" in result.errors[0]

    def test_empty_sequence(self):
        """An empty sequence is valid and points at the entry stage."""
        result = validate_sequence([])
        assert result.valid
        assert result.final_stage is None
        assert result.next_valid_stages == ["question"]
