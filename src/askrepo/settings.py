from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

from askrepo.config import DEFAULT_API_URL, DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT, ENV_PREFIX

ENV_FILE = find_dotenv(usecwd=True)

_ENV_KEYS = ("api_url", "model", "max_context")


def load_env_defaults(env_file: str | Path | None = None) -> dict[str, str]:
    """Collect configuration defaults from a `.env` file and the process environment.

    Variables are named `ASKREPO_<FIELD>`; the process environment overrides the file.

    Args:
        env_file: the dotenv file to read, defaults to the one found from the working directory

    Returns:
        dict[str, str]: field name to raw value, only for variables that are set
    """
    path = ENV_FILE if env_file is None else str(env_file)
    values: dict[str, str | None] = dict(dotenv_values(path)) if path else {}
    values.update(os.environ)

    out: dict[str, str] = {}
    for key in _ENV_KEYS:
        raw = values.get(ENV_PREFIX + key.upper())
        if raw:
            out[key] = raw
    return out


class Settings(BaseModel):
    """Configuration settings for an askrepo run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: str = Field(..., description="Request sent to the model.")
    model: str = Field(default=DEFAULT_MODEL, description="Model identifier.")
    api_url: str = Field(default=DEFAULT_API_URL, description="Generation endpoint.")
    system: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="System preamble.")

    path: list[Path] = Field(default_factory=list, description="Files or directories to search.")
    include_glob: list[str] = Field(default_factory=list, description="Include glob.")
    exclude_glob: list[str] = Field(default_factory=list, description="Exclude glob.")
    extensions: str = Field(default="", description="Comma list of allowed extensions.")
    recursive: bool = Field(default=False, description="Search directories without depth limit.")
    max_depth: int = Field(default=1, ge=0, description="Directory depth searched when not recursive.")
    no_git: bool = Field(default=False, description="Do not use git ls-files.")

    max_context: int | None = Field(default=None, gt=0, description="Explicit context ceiling.")
    stdin: bool = Field(default=False, description="Admit standard input as a document.")
    no_stream: bool = Field(default=False, description="Wait for the whole response.")

    debug: bool = Field(default=False, description="Verbose logging.")
    log_file: str = Field(default="", description="Log file path.")

    @classmethod
    def from_args(cls, args: dict[str, Any], env: dict[str, str] | None = None) -> Settings:
        """Merge parsed CLI arguments over environment defaults.

        Args:
            args: parsed arguments; `None` values mean "not given on the command line"
            env: environment defaults, see `load_env_defaults`

        Returns:
            Settings: the validated settings
        """
        merged: dict[str, Any] = dict(env if env is not None else load_env_defaults())
        merged.update({k: v for k, v in args.items() if v is not None})
        return cls(**merged)

    @property
    def effective_max_depth(self) -> int | None:
        """Depth handed to the file search; None means unlimited."""
        return None if self.recursive else self.max_depth

    @property
    def extension_list(self) -> list[str]:
        """Allowed extensions, lower case without leading dot."""
        return [e.strip().lstrip(".").lower() for e in self.extensions.split(",") if e.strip()]
