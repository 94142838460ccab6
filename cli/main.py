from __future__ import annotations

from typing import Optional

import typer
import uvicorn

from pdf2video.core.config import get_settings

from .tasks import tasks_app

cli = typer.Typer(help="Command line interface for the PDF-to-video conversion service")
cli.add_typer(tasks_app, name="tasks")


@cli.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the API server to"),
    port: Optional[int] = typer.Option(None, help="Port to bind the API server to"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto reload (development only)"),
) -> None:
    settings = get_settings()
    host = host or settings.cli_default_host
    port = port or settings.cli_default_port
    reload = settings.cli_reload if reload is None else reload

    uvicorn.run("pdf2video.main:app", host=host, port=port, reload=reload)


@cli.command()
def show_config() -> None:
    settings = get_settings()
    secrets = {"access_key_id", "secret_access_key"}
    for field, value in settings.model_dump().items():
        if field in secrets and value:
            value = "********"
        typer.echo(f"{field}: {value}")


@cli.command()
def stub_composer(
    host: str = typer.Option("127.0.0.1", help="Host to bind the stub to"),
    port: int = typer.Option(9000, help="Port to bind the stub to"),
    polls_until_done: int = typer.Option(2, help="Status polls before a job reports success"),
) -> None:
    """Run a local stand-in for the remote composition service."""
    from .local_composer import run

    run(host=host, port=port, polls_until_done=polls_until_done)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
