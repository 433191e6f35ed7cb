"""turnstore CLI - append to and query a conversation store.

Uses tyro for type-driven CLI generation from dataclasses.
"""

from __future__ import annotations

from typing import Annotated

import tyro

from turnstore.cli.commands.append import Append
from turnstore.cli.commands.query import Query
from turnstore.cli.commands.rebuild import Rebuild
from turnstore.cli.commands.stats import Stats

# Type aliases for subcommand annotations
_Append = Annotated[Append, tyro.conf.subcommand("append")]
_Query = Annotated[Query, tyro.conf.subcommand("query")]
_Search = Annotated[Query, tyro.conf.subcommand("search")]  # alias
_Stats = Annotated[Stats, tyro.conf.subcommand("stats")]
_Rebuild = Annotated[Rebuild, tyro.conf.subcommand("rebuild")]

# Top-level commands using pipe syntax
Command = _Append | _Query | _Search | _Stats | _Rebuild


def main(args: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    # configure structlog (respects TURNSTORE_DEBUG env var)
    from turnstore.logging_config import configure_logging

    configure_logging()

    try:
        cmd = tyro.cli(
            Command,
            prog="turnstore",
            description="Append-only conversation memory with semantic search.",
            args=args,
        )
        return cmd.run()
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        from turnstore import console

        console.error(str(e))
        return 1
