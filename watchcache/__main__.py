"""Entry point for `python -m watchcache`.

Usage:
    python -m watchcache
    uv run python -m watchcache
"""

from __future__ import annotations

import asyncio

from watchcache.app import main

asyncio.run(main())
