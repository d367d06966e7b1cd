"""Text templates for the planning workflow.

Everything here is plain string formatting over the session's subject,
answers and revision requests. The orchestrator caches the results on the
session so repeated reads return the same text.

Project types are detected from keywords in the subject:
- cli: command-line tools and scripts
- web_application: browser-facing applications
- api: backend services consumed by other software
- generic: anything else
"""

import re

from kat_planner.config import REVIEW_DOCUMENTS
from kat_planner.session.models import DevelopmentPlan, GeneratedDocument

PROJECT_TYPES = ["cli", "web_application", "api", "generic"]

# Checked in order; the first profile with a matching keyword wins
_PROJECT_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("cli", ("cli", "command line", "command-line", "terminal", "shell script")),
    ("api", ("api", "rest", "graphql", "endpoint", "backend service", "microservice")),
    ("web_application", ("web", "website", "dashboard", "browser", "frontend", "web app")),
]

_PLATFORM_SUMMARIES = {
    "cli": "Command-line tool run from a terminal, suited to automation and scripting",
    "web_application": "Browser-based application usable from desktop and mobile devices",
    "api": "Backend service exposing an interface for other applications",
    "generic": "Platform to be confirmed during design",
}


def detect_project_type(subject: str) -> str:
    """Classify a project idea by keyword.

    Args:
        subject: Free-text project idea

    Returns:
        One of PROJECT_TYPES
    """
    text = subject.lower()
    for project_type, keywords in _PROJECT_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}\b", text) for keyword in keywords):
            return project_type
    return "generic"


def generate_questions(subject: str) -> list[str]:
    """Clarifying questions for a new session."""
    project_type = detect_project_type(subject)
    questions = [
        "Core functionality: What is the primary problem this project solves?",
        "Target users: Who will use this application?",
        "Key features: What are the essential features for the initial release?",
        "Technical constraints: Any specific platforms, languages, or frameworks?",
        "Success criteria: How will you measure the project's success?",
    ]
    if project_type == "cli":
        questions.append("Interface: Which commands, flags and output formats are needed?")
    elif project_type == "web_application":
        questions.append("Access: Do users need accounts, and on which devices will they use it?")
    elif project_type == "api":
        questions.append("Consumers: Which clients call the API, and how do they authenticate?")
    return questions


def generate_refined_specification(
    subject: str,
    answers: dict[str, str],
    revisions: list[str] | None = None,
) -> str:
    """Build the refined specification from the idea and the caller's answers.

    Every answer appears verbatim, and each revision request is listed so the
    regenerated text reflects it.
    """
    project_type = detect_project_type(subject)
    lines = [
        f"**Project:** {subject}",
        f"**Project Type:** {project_type}",
        f"**Platform:** {_PLATFORM_SUMMARIES[project_type]}",
        "",
        "**Clarified Requirements:**",
    ]
    if answers:
        lines.extend(f"- {key}: {value}" for key, value in answers.items())
    else:
        lines.append("- None provided")

    if revisions:
        lines.append("")
        lines.append("**Revision Requests Applied:**")
        lines.extend(f"{i}. {revision}" for i, revision in enumerate(revisions, start=1))

    lines.extend(
        [
            "",
            "**Success Criteria:**",
            "- Every clarified requirement is covered by at least one task",
            "- Documents are approved before implementation starts",
        ]
    )
    return "\n".join(lines)


def generate_documents(
    subject: str, refined_specification: str, project_type: str
) -> list[GeneratedDocument]:
    """Generate the review documents (requirements, design, tasks, AGENTS)."""
    bodies = {
        "requirements.md": _requirements(subject, refined_specification),
        "design.md": _design(subject, project_type),
        "tasks.md": _tasks(project_type),
        "AGENTS.md": _agents(subject, project_type),
    }
    return [GeneratedDocument(title=title, content=bodies[title]) for title in REVIEW_DOCUMENTS]


def _requirements(subject: str, refined_specification: str) -> str:
    return (
        f"# Functional Requirements\n\n"
        f"## 1. Project\n{subject}\n\n"
        f"## 2. Refined Specification\n{refined_specification}\n\n"
        "## 3. Non-Functional Requirements\n"
        "- Performance: Define acceptable response times\n"
        "- Security: Define data protection requirements\n"
        "- Compatibility: Define supported platforms"
    )


def _design(subject: str, project_type: str) -> str:
    components = {
        "cli": ["Argument parser", "Command handlers", "Output formatting"],
        "web_application": ["Frontend views", "Application server", "Persistence layer"],
        "api": ["Request routing", "Service layer", "Persistence layer"],
        "generic": ["Core module", "Configuration", "Persistence layer"],
    }[project_type]
    parts = [
        "# Technical Design\n",
        "## Architecture Overview",
        f"{_PLATFORM_SUMMARIES[project_type]} for: {subject}\n",
        "## Core Components",
    ]
    parts.extend(f"### {i}. {name}" for i, name in enumerate(components, start=1))
    return "\n".join(parts)


def _tasks(project_type: str) -> str:
    phase_two = {
        "cli": "- [ ] Implement commands and argument parsing",
        "web_application": "- [ ] Implement pages and user workflows",
        "api": "- [ ] Implement endpoints and request validation",
        "generic": "- [ ] Implement core features",
    }[project_type]
    return (
        "# Implementation Tasks\n\n"
        "## Phase 1: Core Infrastructure\n"
        "- [ ] Set up project structure and dependencies\n"
        "- [ ] Create configuration system\n"
        "- [ ] Set up logging and error handling\n\n"
        "## Phase 2: Core Functionality\n"
        f"{phase_two}\n"
        "- [ ] Create data models\n\n"
        "## Phase 3: Testing and Deployment\n"
        "- [ ] Unit tests\n"
        "- [ ] Integration tests\n"
        "- [ ] Package for deployment"
    )


def _agents(subject: str, project_type: str) -> str:
    return (
        "# AGENTS.md\n\n"
        f"Guidance for coding agents working on: {subject}\n\n"
        "## Ground Rules\n"
        "- Follow tasks.md in order and check off each task when done\n"
        "- Keep requirements.md and design.md as the source of truth\n"
        "- Add tests alongside every feature\n\n"
        f"## Project Type\n{project_type}"
    )


def generate_test_specifications(project_type: str) -> dict:
    """Test coverage outline attached to the review documents."""
    coverage = [
        "Core functionality validation",
        "Error handling and edge cases",
        "Data processing and storage",
    ]
    if project_type == "cli":
        coverage.append("Command parsing and exit codes")
    elif project_type == "web_application":
        coverage.append("User interface and experience")
    elif project_type == "api":
        coverage.append("Request validation and response contracts")
    return {
        "coverage": coverage,
        "categories": [
            {"name": "Unit Tests", "description": "Individual component functionality validation"},
            {"name": "Integration Tests", "description": "Cross-component interaction verification"},
            {"name": "System Tests", "description": "End-to-end workflow validation"},
        ],
        "qualityMetrics": ["Code coverage: 85%+", "No critical defects at release"],
    }


def generate_development_plan(subject: str, project_type: str) -> DevelopmentPlan:
    """Default development plan used when the caller does not supply one."""
    steps = [
        "Set up project structure and development environment",
        "Implement core functionality",
        "Add configuration and customization options",
        "Implement testing and quality assurance",
        "Write documentation and user guides",
        "Prepare deployment and release",
    ]
    if project_type == "web_application":
        steps.insert(2, "Create user interface and user experience")
    elif project_type == "api":
        steps.insert(2, "Define and document the API contract")
    elif project_type == "cli":
        steps.insert(2, "Design command structure and help output")

    return DevelopmentPlan(
        implementation_steps=steps,
        milestones=[
            "Project setup complete",
            f"Core features implemented for: {subject}",
            "Testing phase complete",
            "Final release",
        ],
        estimated_timeline="4-6 weeks",
    )


def render_questions(subject: str, questions: list[str]) -> str:
    """Displayable text for the questioning stage."""
    lines = [f"Interactive Project Planning: {subject}", "", "Clarifying questions:"]
    lines.extend(f"{i}. {q}" for i, q in enumerate(questions, start=1))
    return "\n".join(lines)


def render_documents(documents: list[GeneratedDocument]) -> str:
    """Displayable text for the document review stage."""
    sections = ["Interactive Project Planning - Document Review", ""]
    for doc in documents:
        sections.append(f"--- {doc.title.upper()} ---")
        sections.append(doc.content)
        sections.append("")
    return "\n".join(sections).rstrip()


def render_development_plan(plan: DevelopmentPlan) -> str:
    """Displayable text for the development stage."""
    lines = ["Development Plan", "", "Implementation steps:"]
    lines.extend(f"{i}. {step}" for i, step in enumerate(plan.implementation_steps, start=1))
    lines.append("")
    lines.append("Milestones:")
    lines.extend(f"- {m}" for m in plan.milestones)
    if plan.estimated_timeline:
        lines.append("")
        lines.append(f"Estimated timeline: {plan.estimated_timeline}")
    return "\n".join(lines)
