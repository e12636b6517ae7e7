"""
leasecache CLI
Inspect and maintain cache namespaces from the command line.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from leasecache.cache import MISSING, CacheError, PeekResult, create_provider
from leasecache.config import settings

console = Console()


def _run(coro) -> Any:
    return asyncio.run(coro)


async def _with_cache(url: Optional[str], namespace: Optional[str], action) -> Any:
    provider = create_provider(url=url)
    try:
        await provider.connect()
        return await action(provider.create_cache(namespace))
    finally:
        await provider.close()


@click.group()
@click.option("--url", "-u", envvar="LEASECACHE_REDIS_URL", help="Redis URL")
@click.option("--log-level", default=None, help="Logging level")
@click.pass_context
def cli(ctx, url: Optional[str], log_level: Optional[str]):
    """leasecache - inspect a shared lease cache."""
    logging.basicConfig(
        level=getattr(logging, (log_level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["url"] = url


@cli.command()
@click.argument("namespace")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def keys(ctx, namespace: str, as_json: bool):
    """List keys in a namespace."""
    found = _run(_with_cache(ctx.obj["url"], namespace, lambda cache: cache.keys()))

    if as_json:
        console.print(json.dumps(sorted(found), indent=2))
        return

    table = Table(title=f"Keys in {namespace} ({len(found)})")
    table.add_column("Key", style="cyan")
    for key in sorted(found):
        table.add_row(key)
    console.print(table)


@cli.command()
@click.argument("namespace")
@click.argument("key")
@click.pass_context
def peek(ctx, namespace: str, key: str):
    """Show a key's value or lease state without taking the lease."""
    try:
        result = _run(_with_cache(ctx.obj["url"], namespace, lambda cache: cache.peek(key)))
    except CacheError as e:
        console.print(f"❌ [red]Error: {e}[/red]")
        sys.exit(1)

    if result is MISSING:
        console.print(f"[dim]{key}: not cached[/dim]")
    elif isinstance(result, PeekResult):
        state = "null" if result.has_value else "in progress"
        console.print(f"[yellow]{key}: {state}[/yellow], expires in {result.ttl_remaining:.0f}s")
    else:
        console.print(json.dumps(result, indent=2))


@cli.command()
@click.argument("namespace")
@click.argument("key")
@click.pass_context
def delete(ctx, namespace: str, key: str):
    """Delete a key."""
    if _run(_with_cache(ctx.obj["url"], namespace, lambda cache: cache.delete(key))):
        console.print(f"✅ [green]Deleted {key}[/green]")
    else:
        console.print(f"❌ [red]Failed to delete {key}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("namespace")
@click.pass_context
def clear(ctx, namespace: str):
    """Delete every key in a namespace."""
    _run(_with_cache(ctx.obj["url"], namespace, lambda cache: cache.clear()))
    console.print(f"✅ [green]Cleared {namespace}[/green]")


@cli.command()
@click.pass_context
def health(ctx):
    """Check store health."""
    status = _run(_with_cache(ctx.obj["url"], None, lambda cache: cache.health_check()))
    if status.get("connected"):
        console.print(f"✅ [green]{status['backend']} store is healthy[/green]")
        for name, value in status.items():
            if name not in ("backend", "connected", "namespace"):
                console.print(f"   {name}: {value}")
    else:
        console.print(f"❌ [red]Store unavailable: {status.get('error', 'unknown')}[/red]")
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
