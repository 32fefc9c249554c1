import os
from pathlib import Path
from typing import Union

from sidecar.utils.errors import AccessDeniedError

PathLike = Union[str, "os.PathLike[str]"]


def is_path_allowed(target: Path, project_root: Path) -> bool:
    """Check whether an already-resolved target lies inside the project root."""
    root = project_root.resolve()
    return target == root or root in target.parents


def enforce_allowed_path(path: PathLike, project_root: Path) -> Path:
    """Resolve ``path`` against the project root and refuse traversal.

    Relative paths are joined to the root; absolute paths are taken as-is and
    must still land inside the root. Raises AccessDeniedError otherwise and
    returns the resolved path.
    """
    raw = os.fspath(path)
    resolved = (project_root / Path(raw).expanduser()).resolve()
    if not is_path_allowed(resolved, project_root):
        raise AccessDeniedError(raw)
    return resolved


def relative_to_root(target: Path, project_root: Path) -> str:
    """Return the POSIX-style path of target relative to the project root."""
    try:
        rel = target.resolve().relative_to(project_root.resolve())
    except ValueError:
        return target.as_posix()
    return rel.as_posix() or "."
