"""Dotenv support for local runs; deployed services read real env vars only."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VAR = "FANOUT_ENV_FILE"


def default_env_path() -> Path:
  """Return FANOUT_ENV_FILE when set, else the .env next to pyproject.toml."""
  override = os.getenv(ENV_FILE_VAR, "").strip()
  if override:
    return Path(override).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_line(raw_line: str) -> tuple[str, str] | None:
  """Parse one dotenv line; comments, blanks and malformed lines yield None."""
  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  key, sep, value = line.partition("=")
  key = key.strip()
  if not sep or not key:
    return None
  value = value.strip()
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return key, value[1:-1]
  # Unquoted values may carry a trailing comment.
  return key, value.split(" #", 1)[0].rstrip()


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Copy dotenv entries into os.environ and return the ones that were applied."""
  if not path.is_file():
    return {}

  applied: dict[str, str] = {}
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = parse_env_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied[key] = value
  return applied
