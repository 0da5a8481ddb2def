"""Per-file asyncio locks.

asyncio locks bind to the loop they are first contended on, so the registry
is keyed by event loop first and by file path second.
"""

import asyncio
import weakref
from pathlib import Path

_file_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[Path, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def file_lock(path: Path) -> asyncio.Lock:
    """Process-wide lock for one file on the running event loop."""
    loop = asyncio.get_running_loop()
    locks = _file_locks.setdefault(loop, {})
    return locks.setdefault(path, asyncio.Lock())
