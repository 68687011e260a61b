from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer

from .client import IntelCache
from .config import DEFAULT_RPM
from .core.errors import ConfigError

app = typer.Typer(help="intelcache: local entity cache for OpenCTI/OpenAEV platforms")


def _platforms_opt():
    return typer.Option(
        None, "--platforms-file", help="TOML file with [[platforms]] tables"
    )


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log cache activity"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open(platforms_file: Optional[Path], **kwargs) -> IntelCache:
    try:
        return IntelCache(platforms_file=platforms_file, **kwargs)
    except ConfigError as e:
        typer.echo(f"config error: {e}", err=True)
        raise typer.Exit(code=2)


@app.command("refresh")
def refresh(
    platform: Optional[str] = typer.Option(None, help="Only this platform id"),
    force: bool = typer.Option(False, help="Refresh even if the cache is fresh"),
    watch: bool = typer.Option(
        False, help="Keep running and refresh on the background schedule"
    ),
    rpm: int = typer.Option(DEFAULT_RPM, help="Requests per minute pacing"),
    debug: bool = typer.Option(False, help="Verbose HTTP diagnostics"),
    platforms_file: Optional[Path] = _platforms_opt(),
):
    """Fetch every entity type from the configured platforms."""
    kwargs = {"rpm": rpm}
    if debug:
        kwargs["debug"] = True
    ic = _open(platforms_file, **kwargs)
    try:
        if platform:
            out = ic.refresh_platform(platform)
            typer.echo(
                f"{out.platform_id}\t{out.total}\t{out.save.status.value if out.save else '-'}"
            )
            if out.failed_types:
                typer.echo(f"failed: {', '.join(out.failed_types)}", err=True)
            ok = out.success
        elif watch:
            sched = ic.scheduler()
            sched.start()
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                sched.stop()
            ok = sched.stats.last_ok
        else:
            ok = ic.refresh(force=force)
    except (ConfigError, KeyError) as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=2)
    if not ok:
        raise typer.Exit(code=1)


@app.command("stats")
def stats(
    platform: Optional[str] = typer.Option(None, help="Only this platform id"),
    platforms_file: Optional[Path] = _platforms_opt(),
):
    """Entity counts and cache age."""
    ic = _open(platforms_file)
    s = ic.stats(platform)
    if s is None:
        typer.echo("no cached entities")
        raise typer.Exit(code=1)
    typer.echo(f"total\t{s.total}")
    if s.platform_count is not None:
        typer.echo(f"platforms\t{s.platform_count}")
    typer.echo(f"age_s\t{int(s.age)}")
    typer.echo(f"expired\t{str(s.is_expired).lower()}")
    for t, n in s.by_type.items():
        if n:
            typer.echo(f"{t}\t{n}")


@app.command("lookup")
def lookup(
    text: str = typer.Argument(..., help="Name, alias or external id"),
    platforms_file: Optional[Path] = _platforms_opt(),
):
    """List cached entities matching a literal name."""
    ic = _open(platforms_file)
    hits = ic.lookup(text)
    if not hits:
        raise typer.Exit(code=1)
    for h in hits:
        e = h.entity
        typer.echo(f"{h.platform_id}\t{e.entity_type}\t{e.id}\t{e.name}")


@app.command("clear")
def clear(
    platform: Optional[str] = typer.Option(None, help="Only this platform id"),
    platforms_file: Optional[Path] = _platforms_opt(),
):
    """Drop cached entities (all platforms unless --platform)."""
    ic = _open(platforms_file)
    if not ic.clear(platform):
        typer.echo(f"nothing cached for {platform}")


@app.command("cleanup")
def cleanup(platforms_file: Optional[Path] = _platforms_opt()):
    """Remove caches of platforms no longer configured."""
    ic = _open(platforms_file)
    for pid in ic.cleanup():
        typer.echo(pid)


@app.command("usage")
def usage(platforms_file: Optional[Path] = _platforms_opt()):
    """Storage bytes used against the quota."""
    ic = _open(platforms_file)
    u = ic.usage()
    quota = str(u.quota) if u.quota else "unlimited"
    typer.echo(f"{u.used}\t{quota}\t{u.percentage:.1f}%")
    if ic.is_near_quota():
        typer.echo("warning: storage is near quota", err=True)


def main() -> None:
    app()


if __name__ == "__main__":
    app()
