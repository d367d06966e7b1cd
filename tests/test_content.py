"""Tests for the workflow text templates."""

import pytest

from kat_planner.config import REVIEW_DOCUMENTS
from kat_planner.workflow import content


class TestDetectProjectType:
    @pytest.mark.parametrize(
        "subject,expected",
        [
            ("build a CLI tool", "cli"),
            ("a command-line tool for backups", "cli"),
            ("REST API for orders", "api"),
            ("a web dashboard for sales", "web_application"),
            ("a recipe organizer", "generic"),
            ("rapid prototyping notes", "generic"),
        ],
    )
    def test_keywords(self, subject, expected):
        """Keywords in the subject pick the project type."""
        assert content.detect_project_type(subject) == expected


class TestQuestions:
    def test_generic_questions(self):
        """Every subject gets the generic clarifying questions."""
        questions = content.generate_questions("a recipe organizer")
        assert len(questions) == 5
        assert all(q.endswith("?") for q in questions)

    def test_type_specific_question_added(self):
        """A recognised project type adds one tailored question."""
        questions = content.generate_questions("build a CLI tool")
        assert len(questions) == 6
        assert "commands" in questions[-1]


class TestRefinedSpecification:
    def test_mentions_every_answer(self):
        """The refined specification lists every submitted answer."""
        spec = content.generate_refined_specification(
            "build a CLI tool", {"lang": "go", "storage": "sqlite"}
        )
        assert "build a CLI tool" in spec
        assert "lang: go" in spec
        assert "storage: sqlite" in spec

    def test_lists_revisions(self):
        """Recorded revision requests appear in the refined specification."""
        spec = content.generate_refined_specification(
            "idea", {"lang": "go"}, revisions=["add OAuth login"]
        )
        assert "Revision Requests Applied" in spec
        assert "1. add OAuth login" in spec

    def test_deterministic(self):
        """The same inputs always produce the same refined specification."""
        args = ("idea", {"lang": "go"})
        assert content.generate_refined_specification(
            *args
        ) == content.generate_refined_specification(*args)


class TestDocuments:
    def test_four_documents_in_order(self):
        """generate_documents returns the four review documents in order."""
        documents = content.generate_documents("build a CLI tool", "spec text", "cli")
        assert [d.title for d in documents] == REVIEW_DOCUMENTS
        assert "spec text" in documents[0].content
        assert all(d.content for d in documents)

    def test_render_documents(self):
        """render_documents prints a heading per document."""
        documents = content.generate_documents("idea", "spec", "generic")
        rendered = content.render_documents(documents)
        assert "--- REQUIREMENTS.MD ---" in rendered
        assert "--- AGENTS.MD ---" in rendered

    def test_test_specifications(self):
        """The test outline adds coverage for the project type."""
        spec = content.generate_test_specifications("api")
        assert "Request validation and response contracts" in spec["coverage"]
        assert spec["categories"]


class TestDevelopmentPlan:
    def test_plan_mentions_subject(self):
        """The default development plan refers to the subject."""
        plan = content.generate_development_plan("a web dashboard", "web_application")
        assert plan.implementation_steps
        assert any("a web dashboard" in m for m in plan.milestones)
        assert plan.estimated_timeline

    def test_render_plan(self):
        """render_development_plan lists steps and milestones."""
        plan = content.generate_development_plan("idea", "generic")
        rendered = content.render_development_plan(plan)
        assert "1. Set up project structure" in rendered
        assert "Estimated timeline" in rendered
