from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from dotenv import find_dotenv, load_dotenv


PathLike = Union[str, Path]

# points the service at a dotenv file outside the working tree
ENV_FILE_VARIABLE = "WEBVAULT_ENV_FILE"


def resolve_env_file(dotenv_path: PathLike | None = None) -> Optional[Path]:
    """Pick the dotenv file to load.

    An explicit ``dotenv_path`` wins, then ``$WEBVAULT_ENV_FILE``, then the
    first ``.env`` found walking up from the current working directory.
    Returns None when the chosen file does not exist.
    """
    candidate = dotenv_path or os.getenv(ENV_FILE_VARIABLE) or find_dotenv(usecwd=True)
    if not candidate:
        return None
    path = Path(candidate).expanduser()
    return path if path.is_file() else None


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> Optional[Path]:
    """Load the service's dotenv file into ``os.environ``.

    Returns the path that was loaded, or None when there was nothing to load.
    With ``override`` the file's values replace variables already exported.
    """
    path = resolve_env_file(dotenv_path)
    if path is None:
        return None
    load_dotenv(dotenv_path=path, override=override)
    return path
