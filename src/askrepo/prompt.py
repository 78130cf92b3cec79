"""Budget-aware assembly of the prompt context.

Fragments are admitted one at a time. Each admission checks the running total
against the context ceiling and either appends the whole fragment or rejects
it with `BudgetExceededError`; a fragment is never truncated.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from askrepo.config import BASELINE_CONTEXT, BYTES_PER_TOKEN, DEFAULT_MAX_CONTEXT, PROMPT_CONTEXT_TEMPLATE
from askrepo.exceptions import BudgetExceededError
from askrepo.file_manipulation import extract_text
from askrepo.logging import logger
from askrepo.models import AdmittedFile, Candidate, PromptStats

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    ExtractorFn = Callable[[Path], str]


def estimate_tokens(byte_len: int) -> int:
    """Approximate a token count from a size in bytes."""
    return byte_len // BYTES_PER_TOKEN


def byte_len(text: str) -> int:
    """Size of `text` once encoded as UTF-8."""
    return len(text.encode("utf-8"))


def resolve_max_context(
    prompt_context_len_estimated: int,
    max_context: int | None = None,
    *,
    default_max_context: int = DEFAULT_MAX_CONTEXT,
    baseline: int = BASELINE_CONTEXT,
) -> int:
    """Pick the context window handed to the backend.

    An explicit ceiling always wins. Otherwise the window starts at `baseline`
    and doubles until it covers the estimated prompt size, never going past
    `default_max_context`.

    Args:
        prompt_context_len_estimated: estimated size of the assembled prompt
        max_context: explicit ceiling, if any
        default_max_context: platform ceiling
        baseline: smallest window requested

    Returns:
        int: the context window
    """
    if max_context is not None:
        return max_context
    if prompt_context_len_estimated > default_max_context:
        return default_max_context

    aligned = baseline
    while aligned < prompt_context_len_estimated:
        aligned *= 2
    return min(aligned, default_max_context)


class PromptBuilder:
    """Accumulate files and documents under a context budget and assemble the prompt.

    The builder is single-owner: admissions happen in call order and the accepted
    subset depends on that order once the budget is crossed.
    """

    def __init__(
        self,
        prompt: str,
        *,
        default_max_context: int = DEFAULT_MAX_CONTEXT,
        extractor: ExtractorFn = extract_text,
    ) -> None:
        self._prompt = prompt
        self._default_max_context = default_max_context
        self._extractor = extractor
        self._files: list[AdmittedFile] = []
        self._documents: list[str] = []
        self._total_content_len = 0
        self._max_context: int | None = None

    def max_context(self, value: int | None) -> PromptBuilder:
        """Set an explicit ceiling, or clear it with None to resolve it at build time."""
        self._max_context = value
        return self

    @property
    def files(self) -> tuple[AdmittedFile, ...]:
        return tuple(self._files)

    @property
    def documents(self) -> tuple[str, ...]:
        return tuple(self._documents)

    @property
    def total_content_len(self) -> int:
        return self._total_content_len

    @property
    def effective_max_context(self) -> int:
        """Ceiling used by admission checks."""
        if self._max_context is not None:
            return self._max_context
        return self._default_max_context

    def _check_budget(self, content_len: int, source: str) -> None:
        ceiling = self.effective_max_context
        if estimate_tokens(self._total_content_len + content_len) > ceiling:
            logger.debug("Rejected fragment", source=source, content_len=content_len, max_context=ceiling)
            raise BudgetExceededError(max_context=ceiling, content_len=content_len, source=source)

    def add_candidate(self, candidate: Candidate) -> int:
        """Admit an already extracted file.

        Args:
            candidate (Candidate): the file to render and admit

        Raises:
            BudgetExceededError: if the rendered fragment does not fit; the builder is unchanged.

        Returns:
            int: the rendered fragment length in bytes
        """
        admitted = AdmittedFile(path=candidate.path, content=candidate.render())
        self._check_budget(admitted.content_len, str(candidate.path))
        self._total_content_len += admitted.content_len
        self._files.append(admitted)
        logger.debug("Added file", path=str(candidate.path), content_len=admitted.content_len)
        return admitted.content_len

    def add_file(self, path: Path) -> int:
        """Extract, render and admit a file.

        Args:
            path (Path): the file to admit

        Raises:
            ContentExtractionError: if the file text cannot be extracted; the builder is unchanged.
            BudgetExceededError: if the rendered fragment does not fit; the builder is unchanged.

        Returns:
            int: the rendered fragment length in bytes
        """
        content = self._extractor(path)
        return self.add_candidate(Candidate.from_path(path, content))

    def add_document(self, content: str) -> int:
        """Admit raw text without file wrapping.

        Raises:
            BudgetExceededError: if the document does not fit; the builder is unchanged.

        Returns:
            int: the document length in bytes
        """
        content_len = byte_len(content)
        self._check_budget(content_len, "document")
        self._total_content_len += content_len
        self._documents.append(content)
        logger.debug("Added document", content_len=content_len)
        return content_len

    def _context(self) -> str:
        envelopes: list[str] = []
        if self._files:
            files = "".join(f"\n{f.content}" for f in self._files)
            envelopes.append(f"<files>\n{files}\n</files>")
        if self._documents:
            documents = "\n".join(self._documents)
            envelopes.append(f"<documents>\n{documents}\n</documents>")
        return "\n".join(envelopes)

    def build(self) -> tuple[str, PromptStats]:
        """Assemble the prompt and its statistics.

        Building does not modify the builder; two calls without admissions in
        between return identical results.

        Returns:
            tuple[str, PromptStats]: the prompt and its statistics
        """
        if self._files or self._documents:
            prompt = "\n".join([self._prompt, PROMPT_CONTEXT_TEMPLATE.format(context=self._context())])
        else:
            prompt = self._prompt

        prompt_context_len_estimated = estimate_tokens(byte_len(prompt))
        stats = PromptStats(
            file_count=len(self._files),
            document_count=len(self._documents),
            total_content_len=self._total_content_len,
            context_len_estimated=estimate_tokens(self._total_content_len),
            prompt_context_len_estimated=prompt_context_len_estimated,
            max_context=resolve_max_context(
                prompt_context_len_estimated,
                self._max_context,
                default_max_context=self._default_max_context,
            ),
        )
        return prompt, stats
