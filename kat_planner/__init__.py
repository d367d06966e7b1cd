"""kat-planner: a session state machine that walks a calling agent from idea
to specification, approval and development."""

__version__ = "0.1.0"
