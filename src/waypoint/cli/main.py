"""Waypoint CLI — run the server, set up the database, browse places.

Usage:
    waypoint serve --reload                 # Run the API with uvicorn
    waypoint init-db                        # Create tables (dev/test; use alembic in prod)
    waypoint places --sort name --limit 10  # List places through the HTTP API
    waypoint aggregate                      # Places per owner
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx

from waypoint import __version__

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("WAYPOINT_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.Client:
    return httpx.Client(base_url=_api_url(), timeout=30.0)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) if row.get(k) is not None else "-")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _get(path: str, params: Optional[dict] = None) -> httpx.Response:
    try:
        with _client() as c:
            r = c.get(path, params=params)
    except httpx.ConnectError:
        click.secho(f"Backend not reachable at {_api_url()}", fg="red", err=True)
        sys.exit(1)
    if r.status_code >= 400:
        click.secho(f"Error {r.status_code}: {r.text}", fg="red", err=True)
        sys.exit(1)
    return r


@click.group()
@click.version_option(version=__version__, prog_name="waypoint")
def main():
    """Waypoint — share places and follow activity in real time."""


@main.command()
@click.option("--host", default=None, help="Bind address (default from WAYPOINT_HOST)")
@click.option("--port", default=None, type=int, help="Port (default from WAYPOINT_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from waypoint.config import settings

    uvicorn.run(
        "waypoint.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command("init-db")
def init_db():
    """Create all tables in the configured database."""
    from waypoint.config import settings
    from waypoint.db.engine import create_schema, engine

    async def _init():
        await create_schema()
        await engine.dispose()

    asyncio.run(_init())
    click.secho(f"Schema created in {settings.database_url.split('@')[-1]}", fg="green")


@main.command()
@click.option("--owner-id", help="Only places of this owner")
@click.option("--search", "-q", help="Case-insensitive name search")
@click.option("--sort", default="-created_at", show_default=True)
@click.option("--page", default=1, show_default=True)
@click.option("--limit", default=20, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def places(owner_id: Optional[str], search: Optional[str], sort: str, page: int,
           limit: int, as_json: bool):
    """List places."""
    params = {"sort": sort, "page": page, "limit": limit}
    if owner_id:
        params["owner_id"] = owner_id
    if search:
        params["q"] = search

    r = _get("/api/v1/places", params=params)
    rows = r.json()
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    _print_table(rows, [
        ("ID", "_id", 36),
        ("NAME", "name", 24),
        ("LAT", "latitude", 10),
        ("LNG", "longitude", 10),
    ])
    total = r.headers.get("X-Total-Count", str(len(rows)))
    click.echo(f"\npage {page} · {len(rows)} shown · {total} total")


@main.command()
def aggregate():
    """Number of places per owner."""
    rows = _get("/api/v1/places/aggregate").json()
    _print_table(rows, [
        ("OWNER", "owner_name", 24),
        ("OWNER ID", "owner_id", 36),
        ("PLACES", "count", 6),
    ])


if __name__ == "__main__":
    main()
