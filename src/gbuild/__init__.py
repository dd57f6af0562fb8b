"""gbuild - convention-based builder for workspaces of Go packages and commands."""

__version__ = "0.3.0"
