"""
askrepo — ask a local model about local files.

Overview
--------
Collects files under the given paths, packs as many of them as fit in the
context window into the prompt, and streams the model's answer to stdout.

Files are admitted in search order until the next one would overflow the
context ceiling (`--max-context`, or 16k approximated tokens when unset);
unreadable files are skipped. The context window requested from the backend
is the explicit ceiling when given, otherwise the smallest power-of-two
multiple of 2048 covering the assembled prompt.

Usage
-----
Run `python -m askrepo.cli --help` for full options. Common examples:
    - Ask about the files of the current directory:
        askrepo run "What does this project do?" --path .

    - Search recursively, python and markdown only:
        askrepo run "Where is the config loaded?" --path src -r --extensions py,md

    - Pipe a document in and wait for the whole answer:
        cat notes.txt | askrepo run "Summarize" --stdin --no-stream
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from askrepo import __version__
from askrepo.exceptions import AskRepoError, BudgetExceededError, ContentExtractionError
from askrepo.file_manipulation import iter_candidate_paths
from askrepo.llm import LLMClient
from askrepo.logging import logger, setup_logging
from askrepo.models import GeneratePayload, GenerateResponse, ModelParameters, PromptStats
from askrepo.prompt import PromptBuilder
from askrepo.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Sequence


def positive_int(value: str) -> int:
    """Argparse type accepting strictly positive integers."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command line arguments into settings.

    Args:
        argv: the arguments, defaults to `sys.argv[1:]`

    Returns:
        Settings: the merged settings
    """
    p = argparse.ArgumentParser(prog="askrepo", description="Ask a local model about local files.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Send a prompt with file context.")
    run_p.add_argument("prompt", help="Request sent to the model.")
    run_p.add_argument("--model", default=None, help="Model identifier.")
    run_p.add_argument("--api-url", default=None, help="Generation endpoint.")
    run_p.add_argument("--system", default=None, help="System preamble.")
    run_p.add_argument(
        "--path",
        action="append",
        type=Path,
        default=[],
        help="File or directory to search (repeatable).",
    )
    run_p.add_argument(
        "--include-glob",
        action="append",
        default=[],
        help="Include glob (repeatable).",
    )
    run_p.add_argument(
        "--exclude-glob",
        action="append",
        default=[],
        help="Exclude glob (repeatable).",
    )
    run_p.add_argument("--extensions", default="", help="Comma list of extensions, e.g. py,md.")
    run_p.add_argument("-r", "--recursive", action="store_true", help="No depth limit.")
    run_p.add_argument("--max-depth", type=positive_int, default=1, help="Directory depth when not recursive.")
    run_p.add_argument("--no-git", action="store_true", help="Do not use git ls-files.")
    run_p.add_argument("--max-context", type=positive_int, default=None, help="Context ceiling in approximated tokens.")
    run_p.add_argument("--stdin", action="store_true", help="Admit standard input as a document.")
    run_p.add_argument("--no-stream", action="store_true", help="Wait for the whole response.")
    run_p.add_argument("--debug", action="store_true", help="Verbose logging.")
    run_p.add_argument("--log-file", default="", help="Log file path.")

    args = vars(p.parse_args(argv))
    args.pop("command")
    return Settings.from_args(args)


def collect_prompt(settings: Settings, document: str | None = None) -> tuple[str, PromptStats]:
    """Admit the document and the candidate files, then build the prompt.

    Args:
        settings: the run settings
        document: optional text admitted before any file

    Returns:
        tuple[str, PromptStats]: the prompt and its statistics
    """
    builder = PromptBuilder(settings.prompt).max_context(settings.max_context)

    if document:
        try:
            builder.add_document(document)
        except BudgetExceededError as e:
            logger.warning("Document does not fit in the context", error=str(e))

    candidates = iter_candidate_paths(
        settings.path,
        includes=settings.include_glob,
        excludes=settings.exclude_glob,
        extensions=settings.extension_list,
        max_depth=settings.effective_max_depth,
        use_git=not settings.no_git,
    )
    for path in candidates:
        try:
            builder.add_file(path)
        except ContentExtractionError as e:
            logger.warning("Skipping unreadable file", path=str(path), reason=e.reason)
        except BudgetExceededError as e:
            logger.info("Context budget reached", error=str(e))
            break

    return builder.build()


def format_stats(stats: PromptStats) -> str:
    """Render the prompt statistics summary."""
    return (
        f"Total of files: {stats.file_count},\n"
        f"Total of documents: {stats.document_count},\n"
        f"Total of contents: {stats.total_content_len},\n"
        f"Documents context size: {stats.context_len_estimated}\n"
        f"Prompt context size: {stats.prompt_context_len_estimated}\n"
        f"Max Context size: {stats.max_context}"
    )


def log_final_frame(frame: GenerateResponse) -> None:
    logger.info(
        "Generation done",
        model=frame.model,
        done_reason=frame.done_reason,
        total_duration=frame.total_duration,
        load_duration=frame.load_duration,
        prompt_eval_count=frame.prompt_eval_count,
        eval_count=frame.eval_count,
        prompt_tokens_per_second=round(frame.prompt_tokens_per_second, 2),
        tokens_per_second=round(frame.tokens_per_second, 2),
    )


class StreamPrinter:
    """Write response deltas to a text stream as they arrive."""

    def __init__(self, out: TextIO) -> None:
        self.out = out
        self.last: GenerateResponse | None = None

    def __call__(self, frame: GenerateResponse) -> bool:
        self.out.write(frame.response)
        self.out.flush()
        self.last = frame
        if frame.done:
            self.out.write("\n")
            log_final_frame(frame)
        return False


async def run(settings: Settings, out: TextIO | None = None) -> int:
    """Build the prompt and run one generation exchange.

    Args:
        settings: the run settings
        out: where the answer is written, defaults to stdout

    Returns:
        int: the exit code
    """
    out = out or sys.stdout
    document = sys.stdin.read() if settings.stdin else None
    prompt, stats = collect_prompt(settings, document=document)
    out.write(format_stats(stats) + "\n\n")

    payload = GeneratePayload(
        model=settings.model,
        system=settings.system or None,
        prompt=prompt,
        stream=not settings.no_stream,
        options=ModelParameters(num_ctx=stats.max_context),
    )
    async with LLMClient(settings.api_url) as client:
        if settings.no_stream:
            generated = await client.generate_once(payload)
            out.write(generated.response + "\n")
            log_final_frame(generated)
        else:
            await client.generate_stream(payload, StreamPrinter(out))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    setup_logging(settings.log_file or None, debug=settings.debug)

    try:
        return asyncio.run(run(settings))
    except AskRepoError as e:
        logger.error("Run failed", error=str(e), kind=type(e).__name__)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
