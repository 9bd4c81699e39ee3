"""wt - git worktree manager driven by tasks."""

__version__ = "0.3.0"
