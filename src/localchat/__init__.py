"""Terminal chat client for local and cloud LLMs with streamed responses."""

__version__ = "0.1.0"
