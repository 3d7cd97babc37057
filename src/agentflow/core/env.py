"""Environment loading helpers."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def _repo_root() -> Path:
    """Return repository root path."""
    return Path(__file__).resolve().parents[3]


def load_environment(env_file: str | None = None) -> bool:
    """Load environment variables from a dotenv file when present.

    Variables already present in the process environment win over the file.
    Returns True when at least one variable was loaded.
    """
    dotenv_path = Path(env_file) if env_file else _repo_root() / ".env"
    if not dotenv_path.exists():
        return False
    return load_dotenv(dotenv_path=dotenv_path, override=False)
