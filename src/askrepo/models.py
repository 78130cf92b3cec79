from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Candidate(BaseModel):
    """A file offered for admission into the prompt context.

    Attributes:
        path: Path of the file, rendered verbatim in the fragment header.
        content: Extracted text of the file.
        extension: Format hint used as the code fence language (no leading dot).
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    content: str
    extension: str = ""

    @classmethod
    def from_path(cls, path: Path, content: str) -> Candidate:
        """Build a candidate whose format hint is the file extension."""
        return cls(path=path, content=content, extension=path.suffix.removeprefix("."))

    def render(self) -> str:
        """Render the candidate as a fenced fragment."""
        return f"path: {self.path}\n```{self.extension}\n{self.content}\n```"


class AdmittedFile(BaseModel):
    """A rendered file fragment accepted by the prompt builder."""

    model_config = ConfigDict(frozen=True)

    path: Path
    content: str

    @computed_field
    @property
    def content_len(self) -> int:
        """Size of the rendered fragment in UTF-8 bytes."""
        return len(self.content.encode("utf-8"))


class PromptStats(BaseModel):
    """Statistics about an assembled prompt."""

    model_config = ConfigDict(frozen=True)

    file_count: int = Field(..., ge=0)
    document_count: int = Field(..., ge=0)
    total_content_len: int = Field(..., ge=0, description="Bytes of admitted fragments")
    context_len_estimated: int = Field(..., ge=0, description="total_content_len / 4")
    prompt_context_len_estimated: int = Field(..., ge=0, description="Assembled prompt bytes / 4")
    max_context: int = Field(..., ge=0, description="Context window handed to the backend")


class ModelParameters(BaseModel):
    """Backend options sent alongside a generation request."""

    num_ctx: int | None = Field(default=None, ge=0)


class GeneratePayload(BaseModel):
    """Body of a generation request."""

    model: str
    prompt: str | None = None
    system: str | None = None
    stream: bool | None = None
    options: ModelParameters | None = None

    def to_json(self) -> dict[str, object]:
        """Serialize the payload, leaving out unset optional fields."""
        return self.model_dump(exclude_none=True)


class GenerateResponse(BaseModel):
    """One response frame; every field defaults when absent from the wire."""

    model_config = ConfigDict(frozen=True)

    model: str = ""
    created_at: str = ""
    response: str = ""
    done: bool = False
    done_reason: str = ""
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    prompt_eval_duration: int = 0
    eval_count: int = 0
    eval_duration: int = 0
    error: str | None = None

    @property
    def tokens_per_second(self) -> float:
        """Generation speed; durations are reported in nanoseconds."""
        if not self.eval_duration:
            return 0.0
        return self.eval_count / self.eval_duration * 1e9

    @property
    def prompt_tokens_per_second(self) -> float:
        """Prompt evaluation speed."""
        if not self.prompt_eval_duration:
            return 0.0
        return self.prompt_eval_count / self.prompt_eval_duration * 1e9
