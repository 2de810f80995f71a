from __future__ import annotations

import os
import time

from typing import Union


# Write a small file mostly atomically. Don't bother to sync directory
# metadata. The temporary sits next to the destination so the rename never
# crosses filesystems.
def atomic_write(fname: str, data: Union[bytes, str], executable: bool = False) -> None:
    if isinstance(data, str):
        data = data.encode("utf-8")
    dirname = os.path.dirname(fname)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    tmpname = fname + "-%s" % int(time.time() * 1e9)
    try:
        with open(tmpname, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmpname, 0o755 if executable else 0o644)
        os.replace(tmpname, fname)
    finally:
        if os.path.exists(tmpname):
            os.remove(tmpname)
