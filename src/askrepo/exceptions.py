from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(eq=False)
class AskRepoError(Exception):
    """Base exception for errors in the askrepo package."""

    def __str__(self) -> str:
        return self.message

    @property
    def message(self) -> str:
        """Human readable description of the error."""
        return self.__class__.__doc__ or self.__class__.__name__


@dataclass(eq=False)
class BudgetExceededError(AskRepoError):
    """Raised when admitting a fragment would overflow the context ceiling."""

    max_context: int
    content_len: int
    source: str = "document"

    @property
    def message(self) -> str:
        return f"Maximum context exceeded ({self.max_context}) while adding {self.source} ({self.content_len}b)"


@dataclass(eq=False)
class ContentExtractionError(AskRepoError):
    """Raised when the text of a candidate file cannot be extracted."""

    path: Path
    reason: str

    @property
    def message(self) -> str:
        return f"{self.reason}\nwhile reading {self.path}"


@dataclass(eq=False)
class ApiStatusError(AskRepoError):
    """Raised when the generation endpoint answers with a non-success status."""

    status_code: int
    payload: Any

    @property
    def message(self) -> str:
        return f"API error ({self.status_code}): {self.payload}"


@dataclass(eq=False)
class FrameDecodeError(AskRepoError):
    """Raised when buffered stream bytes cannot be decoded into a frame."""

    data: bytes
    reason: str

    @property
    def message(self) -> str:
        return f"Could not decode response frame: {self.reason}"


@dataclass(eq=False)
class LLMError(AskRepoError):
    """Raised when the backend reports an error inside a response frame."""

    error: str

    @property
    def message(self) -> str:
        return f"LLM error: {self.error}"


@dataclass(eq=False)
class LLMTransportError(AskRepoError):
    """Raised when the connection to the generation endpoint fails."""

    reason: str

    @property
    def message(self) -> str:
        return f"Transport error: {self.reason}"


@dataclass(eq=False)
class NotAGitRepositoryError(AskRepoError):
    """Raised when the specified directory is not a Git repository."""

    folder: Path

    @property
    def message(self) -> str:
        return f"{self.folder} is not a Git repository."
