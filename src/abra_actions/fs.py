"""Filesystem helpers built on :mod:`pathlib`.

Examples
--------
>>> from pathlib import Path
>>> atomic_write(Path("/tmp/abra/actions.json"), "{}\\n")
>>> read_text(Path("/tmp/abra/actions.json"))
'{}\\n'
"""

from __future__ import annotations

import tempfile
from pathlib import Path, PurePosixPath

__all__ = ["atomic_write", "read_text", "relative_posix"]


def read_text(path: Path, encoding: str = "utf-8") -> str:
    """Read ``path`` as text with an explicit encoding.

    Raises
    ------
    OSError
        If the file cannot be opened.
    UnicodeDecodeError
        If the bytes are not valid in ``encoding``.
    """
    return path.read_text(encoding=encoding)


def atomic_write(path: Path, data: str) -> None:
    """Write ``data`` to ``path`` through a temporary file and rename.

    Readers see either the previous file or the complete new one, never a
    partial write. The temporary file lives in the destination directory so
    the final rename stays on one filesystem.

    Parameters
    ----------
    path : Path
        Destination file. Parent directories are created when missing.
    data : str
        Text written as UTF-8.

    Raises
    ------
    OSError
        If the directory, temporary file or rename cannot be created.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
            newline="\n",
        ) as temp_file:
            tmp_path = Path(temp_file.name)
            temp_file.write(data)
            temp_file.flush()
        tmp_path.replace(path)
    except BaseException:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise


def relative_posix(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` as a POSIX string.

    Paths outside ``root`` are returned unchanged (in POSIX form).
    """
    try:
        relative = path.resolve().relative_to(root.resolve())
    except ValueError:
        return path.as_posix()
    return PurePosixPath(*relative.parts).as_posix()
