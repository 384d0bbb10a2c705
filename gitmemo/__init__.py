"""GitMemo: a local mirror of a GitHub repository's issues and labels."""

__version__ = "1.0.0"
