"""Entry point: python -m linkmem [stats|review|reindex]

- No args / "stats": Print store health and link-graph findings
- "review":          List memories not reviewed within the review window
- "reindex":         Rebuild the search index from the memory files
"""

from __future__ import annotations

import asyncio
import logging
import sys

from linkmem.config import LinkmemConfig, load_config
from linkmem.memory.sync import IndexRegistry
from linkmem.tools.memory_tools import get_memory_tools

_COMMANDS = {
    "stats": "get_mem_stats",
    "review": "needs_review",
    "reindex": "reindex_mems",
}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _run(config: LinkmemConfig, tool_name: str) -> str:
    registry = IndexRegistry(config)
    try:
        tools = get_memory_tools(registry, review_after_days=config.review_after_days)
        return await tools[tool_name]()
    finally:
        await registry.destroy_all()


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "stats"

    if cmd not in _COMMANDS:
        print("Usage: python -m linkmem [stats|review|reindex]")
        print("  stats    Store health and link-graph findings (default)")
        print("  review   Memories due for review")
        print("  reindex  Rebuild the search index")
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    print(asyncio.run(_run(config, _COMMANDS[cmd])))


if __name__ == "__main__":
    main()
