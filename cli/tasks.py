from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import httpx
import typer

DEFAULT_TIMEOUT = 60.0
TERMINAL_STATUSES = {"success", "failed"}


def _build_client(api_base: str) -> httpx.Client:
    base_url = api_base.rstrip("/")
    return httpx.Client(base_url=base_url, timeout=DEFAULT_TIMEOUT)


def _checked(response: httpx.Response) -> httpx.Response:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:  # pragma: no cover - exercised via CLI
        typer.echo(f"Request failed ({exc.response.status_code}): {exc.response.text}")
        raise typer.Exit(code=1)
    return response


tasks_app = typer.Typer(help="Submit PDFs and follow conversion tasks via HTTP")

_API_BASE = typer.Option(
    "http://localhost:8000/api",
    "--api-base",
    envvar="PDF2VIDEO_API_BASE",
    help="Base API URL (e.g. http://localhost:8000/api)",
)


@tasks_app.command("submit")
def submit_task(
    pdf: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="PDF export of the slide deck"),
    duration: Optional[int] = typer.Option(None, "--duration", help="Seconds per slide (2-10)"),
    transition: Optional[str] = typer.Option(None, "--transition", help="none or fade"),
    resolution: Optional[str] = typer.Option(None, "--resolution", help="Output size as WxH"),
    api_base: str = _API_BASE,
) -> None:
    """Upload a PDF and print the created task."""
    form = {
        key: str(value)
        for key, value in {"durationPerSlide": duration, "transition": transition, "resolution": resolution}.items()
        if value is not None
    }
    try:
        with _build_client(api_base) as client, pdf.open("rb") as handle:
            response = client.post(
                "/ppt-to-video/create",
                data=form,
                files={"file": (pdf.name, handle, "application/pdf")},
            )
    except httpx.RequestError as exc:  # pragma: no cover - exercised via CLI
        typer.echo(f"Request error: {exc}")
        raise typer.Exit(code=1)
    typer.echo(_checked(response).text)


@tasks_app.command("status")
def task_status(
    task_id: str = typer.Argument(..., help="Task identifier returned by submit"),
    api_base: str = _API_BASE,
) -> None:
    """Print the current status of a task."""
    try:
        with _build_client(api_base) as client:
            response = client.get("/ppt-to-video/status", params={"taskId": task_id})
    except httpx.RequestError as exc:  # pragma: no cover - exercised via CLI
        typer.echo(f"Request error: {exc}")
        raise typer.Exit(code=1)
    typer.echo(_checked(response).text)


@tasks_app.command("wait")
def wait_for_task(
    task_id: str = typer.Argument(..., help="Task identifier returned by submit"),
    interval: float = typer.Option(2.0, "--interval", help="Seconds between polls"),
    api_base: str = _API_BASE,
) -> None:
    """Poll a task until it succeeds or fails."""
    with _build_client(api_base) as client:
        while True:
            try:
                response = client.get("/ppt-to-video/status", params={"taskId": task_id})
            except httpx.RequestError as exc:  # pragma: no cover - exercised via CLI
                typer.echo(f"Request error: {exc}")
                raise typer.Exit(code=1)
            payload = _checked(response).json()
            typer.echo(f"[{payload['progress']:>3}%] {payload['status']}: {payload['message']}")
            if payload["status"] in TERMINAL_STATUSES:
                break
            time.sleep(interval)

    if payload["status"] == "failed":
        error = payload.get("error") or {}
        typer.echo(f"Failed at {error.get('step')}: {error.get('message')}")
        raise typer.Exit(code=1)
    typer.echo(f"Video: {payload['videoUrl']}")
    if payload.get("downloadUrl"):
        typer.echo(f"Download: {payload['downloadUrl']}")
