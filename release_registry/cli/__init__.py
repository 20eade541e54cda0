"""
Command Line Interface for the Release Registry.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..core.hasher import digest_file
from ..db.base import init_database
from ..logging_config import configure_logging

app = typer.Typer(help="Release Registry - ledger-anchored package releases")
console = Console()

API_URL_OPTION = typer.Option(
    "http://localhost:8000", "--api-url", envvar="REGISTRY_API_URL", help="Registry API base URL"
)
USER_OPTION = typer.Option(None, "--user", envvar="REGISTRY_USER", help="Caller identity")
ROLE_OPTION = typer.Option(None, "--role", envvar="REGISTRY_ROLE", help="Caller role (ADMIN)")


def _client(api_url: str, user: Optional[str] = None, role: Optional[str] = None) -> httpx.Client:
    headers = {}
    if user:
        headers["X-Registry-User"] = user
    if role:
        headers["X-Registry-Role"] = role
    return httpx.Client(base_url=api_url, headers=headers, timeout=60.0)


def _fail(response: httpx.Response) -> None:
    """Print an API error and exit non-zero."""
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = response.text
    if isinstance(detail, dict):
        message = f"{detail.get('error')}: {detail.get('message')}"
    else:
        message = str(detail)
    console.print(f"❌ [{response.status_code}] {message}")
    raise typer.Exit(code=1)


def _request(client: httpx.Client, method: str, path: str, **kwargs: Any) -> httpx.Response:
    try:
        response = client.request(method, path, **kwargs)
    except httpx.RequestError as e:
        console.print(f"❌ Cannot reach registry: {e}")
        raise typer.Exit(code=1)
    if response.status_code >= 400:
        _fail(response)
    return response


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the registry API server."""
    settings = get_settings()
    rprint(Panel.fit("📦 Starting Release Registry", style="bold blue"))
    uvicorn.run(
        "release_registry.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        workers=1 if reload else settings.api_workers,
    )


@app.command("init-db")
def init_db():
    """Create the metadata index tables."""
    configure_logging()
    asyncio.run(init_database())
    console.print("✅ Database initialized")


@app.command("hash")
def hash_file(path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True)):
    """Print the SHA-256 content hash of a file."""
    console.print(f"{digest_file(path)}  {path.name}", highlight=False)


@app.command()
def publish(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    package_id: str = typer.Option(..., "--package-id", "-p", help="Package id"),
    version: str = typer.Option(..., "--version", "-v", help="Version (MAJOR.MINOR.PATCH)"),
    name: Optional[str] = typer.Option(None, help="Display name"),
    description: Optional[str] = typer.Option(None, help="Package description"),
    api_url: str = API_URL_OPTION,
    user: Optional[str] = USER_OPTION,
    role: Optional[str] = ROLE_OPTION,
):
    """Publish a release artifact."""
    data: Dict[str, str] = {"packageId": package_id, "version": version}
    if name:
        data["name"] = name
    if description:
        data["description"] = description

    with _client(api_url, user, role) as client, path.open("rb") as fh:
        response = _request(
            client,
            "POST",
            "/packages/upload",
            data=data,
            files={"file": (path.name, fh, "application/gzip")},
        )

    release = response.json()["release"]
    table = Table(title=f"Published {package_id}@{version}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field in ("hash", "size", "publisher", "download_ref"):
        table.add_row(field, str(release[field]))
    console.print(table)


@app.command()
def show(
    package_id: str = typer.Argument(...),
    version: str = typer.Argument(...),
    api_url: str = API_URL_OPTION,
):
    """Show a release as recorded on the ledger."""
    with _client(api_url) as client:
        detail = _request(client, "GET", f"/packages/{package_id}/{version}").json()

    status_emoji = {"ACTIVE": "🟢", "DISCONTINUED": "🔴"}.get(detail["status"], "❓")
    table = Table(title=f"{package_id}@{version}", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"{status_emoji} {detail['status']}")
    table.add_row("Hash", detail["content_hash"])
    table.add_row("Publisher", detail["publisher"])
    table.add_row("Downloads", str(detail["download_count"]))
    table.add_row("File available", "yes" if detail["file_available"] else "no")
    if detail.get("average_rating") is not None:
        table.add_row("Rating", f"{detail['average_rating']:.2f}")
    console.print(table)


@app.command()
def validate(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    package_id: str = typer.Argument(...),
    version: str = typer.Argument(...),
    api_url: str = API_URL_OPTION,
):
    """Check a local file against the ledger-recorded hash."""
    with _client(api_url) as client, path.open("rb") as fh:
        result = _request(
            client,
            "POST",
            f"/packages/{package_id}/{version}/validate-file",
            files={"file": (path.name, fh, "application/octet-stream")},
        ).json()

    if result["valid"]:
        console.print(f"✅ {result['message']}")
        return
    console.print(f"❌ {result['message']}")
    console.print(f"   expected: {result['expected_hash'] or '-'}", highlight=False)
    console.print(f"   actual:   {result['actual_hash']}", highlight=False)
    raise typer.Exit(code=2)


@app.command()
def download(
    package_id: str = typer.Argument(...),
    version: str = typer.Argument(...),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination file"),
    api_url: str = API_URL_OPTION,
    user: Optional[str] = USER_OPTION,
):
    """Download the artifact of an active release."""
    destination = output or Path(f"{package_id}-{version}.tar.gz")
    with _client(api_url, user) as client:
        response = _request(client, "GET", f"/packages/{package_id}/{version}/download-file")

    destination.write_bytes(response.content)
    console.print(f"✅ Saved {len(response.content)} bytes to {destination}")


@app.command()
def discontinue(
    package_id: str = typer.Argument(...),
    version: str = typer.Argument(...),
    api_url: str = API_URL_OPTION,
    user: Optional[str] = USER_OPTION,
    role: Optional[str] = ROLE_OPTION,
):
    """Discontinue a release. Its artifact is removed from storage."""
    with _client(api_url, user, role) as client:
        release = _request(
            client, "PUT", f"/packages/{package_id}/{version}/discontinue"
        ).json()["release"]
    console.print(f"🛑 {package_id}@{version} is now {release['status']}")


if __name__ == "__main__":
    app()
