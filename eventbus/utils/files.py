"""Small filesystem helpers shared by the segment and marker stores."""

import os
from pathlib import Path


def write_atomic(path: Path, data: bytes, fsync: bool = False) -> None:
    """
    Replace a file's contents atomically.

    Data is written to a temporary sibling and renamed over the target, so
    readers observe either the old or the new contents, never a torn write.

    Args:
        path: Destination file
        data: New contents
        fsync: Whether to fsync the temporary file before renaming
    """
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            if fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
