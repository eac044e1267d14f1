import click


@click.group()
def main() -> None:
    """Lookout - activity observability for agent sessions."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from LOOKOUT_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from LOOKOUT_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the observability server."""
    import uvicorn

    from lookout.server.settings import LookoutSettings

    settings = LookoutSettings()

    uvicorn.run(
        "lookout.server.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
    )


@main.command()
@click.option("--server-url", default="http://localhost:8000", help="Lookout server URL.")
@click.option("--detailed", is_flag=True, default=False, help="Include breakdowns and percentiles.")
def health(server_url: str, detailed: bool) -> None:
    """Print the health report of a running server."""
    import json

    import httpx

    response = httpx.get(f"{server_url.rstrip('/')}/api/health", params={"detailed": detailed}, timeout=10)
    response.raise_for_status()
    click.echo(json.dumps(response.json(), indent=2))


if __name__ == "__main__":
    main()
