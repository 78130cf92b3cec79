from __future__ import annotations

DEFAULT_API_URL = "http://localhost:11434/api/generate"
DEFAULT_MODEL = "llama3.2:latest"

# Context sizes are approximated tokens: one token per BYTES_PER_TOKEN bytes.
BYTES_PER_TOKEN = 4
DEFAULT_MAX_CONTEXT = 16 * 1_024
BASELINE_CONTEXT = 2 * 1_024

PDF_EXTENSION = "pdf"

DEFAULT_SYSTEM_PROMPT = (
    "You are a careful assistant helping a developer understand their local files. "
    "Answer using the files and documents provided in the context when they are relevant, "
    "quote paths when you refer to a file, and say so plainly when the context does not "
    "contain the answer."
)

PROMPT_CONTEXT_TEMPLATE = """Use the following context to answer the request above.
<context>
{context}
</context>"""

DEFAULT_EXCLUDES = {
    ".git",
    ".venv",
    "venv",
    "env",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".ipynb_checkpoints",
    "node_modules",
    "dist",
    "build",
    "target",
    ".DS_Store",
    ".idea",
    ".vscode",
}

ENV_PREFIX = "ASKREPO_"
