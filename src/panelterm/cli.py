"""CLI for the panelterm command."""

import asyncio
import logging
import shlex
from typing import Optional

import typer


app = typer.Typer(
    help="Terminal tab with multiplexed shell sessions",
    add_completion=False,
)


def _log_level(verbose: bool) -> int:
    return logging.DEBUG if verbose else logging.INFO


@app.command()
def tui(
    remote: Optional[str] = typer.Option(None, "--remote", "-r", help="Host service URL, e.g. http://box:8766"),
    shell: Optional[str] = typer.Option(None, "--shell", help="Shell command for local consoles"),
    cwd: Optional[str] = typer.Option(None, "--cwd", help="Working directory for local consoles"),
    start_timeout: float = typer.Option(15.0, "--start-timeout", help="Seconds per start attempt"),
    start_attempts: int = typer.Option(3, "--start-attempts", help="Start attempts before giving up"),
    retry_backoff: float = typer.Option(2.0, "--retry-backoff", help="Seconds between start attempts"),
    history_limit: int = typer.Option(100, "--history-limit", help="Commands kept per console"),
    classify: bool = typer.Option(False, "--classify", help="Mark commands succeeded/failed from prompts"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Keep debug logs"),
):
    """
    Open the terminal tab.

    Examples:
        # Consoles on this machine
        panelterm tui

        # Consoles on a machine running `panelterm host`
        panelterm tui --remote http://buildbox:8766
    """
    from .mux import MultiplexerConfig, PromptClassifier
    from .terminal_tab import TerminalTabApp

    config = MultiplexerConfig(
        start_timeout=start_timeout,
        start_attempts=start_attempts,
        retry_backoff=retry_backoff,
        history_limit=history_limit,
    )

    if remote:
        from .host import WebSocketBridge

        bridge = WebSocketBridge(remote)
    else:
        from .host import LocalPtyBridge

        bridge = LocalPtyBridge(command=shlex.split(shell) if shell else None, cwd=cwd)

    tab = TerminalTabApp(
        bridge,
        config=config,
        classifier=PromptClassifier() if classify else None,
        log_level=_log_level(verbose),
    )
    tab.run()

    # Anything the app could not close on its way out
    runners = getattr(bridge, "runners", {})
    for runner in list(runners.values()):
        runner.close()


@app.command()
def host(
    port: int = typer.Option(8766, "--port", "-p", help="Port to serve on"),
    bind: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    shell: Optional[str] = typer.Option(None, "--shell", help="Shell command for every session"),
    cwd: Optional[str] = typer.Option(None, "--cwd", help="Working directory for sessions"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Serve PTY sessions to remote terminal tabs over WebSocket.

    Examples:
        # Local only
        panelterm host

        # Reachable from other machines
        panelterm host --host 0.0.0.0 --port 9000
    """
    import uvicorn
    from .host import LocalPtyBridge, create_app

    logging.basicConfig(level=_log_level(verbose), format="%(asctime)s %(levelname)s %(message)s")
    command = shlex.split(shell) if shell else None

    typer.echo("Starting panelterm host")
    typer.echo(f"   Host: {bind}")
    typer.echo(f"   Port: {port}")
    typer.echo(f"   Health: http://{bind if bind != '0.0.0.0' else 'localhost'}:{port}/health")

    service = create_app(lambda: LocalPtyBridge(command=command, cwd=cwd))
    uvicorn.run(service, host=bind, port=port)


@app.command()
def health(
    url: str = typer.Argument("http://localhost:8766", help="Host service URL"),
):
    """Check that a host service is up."""
    from .host import WebSocketBridge

    try:
        info = asyncio.run(WebSocketBridge(url).health())
    except Exception as exc:
        typer.echo(f"unreachable: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{info.get('status')}  sessions={info.get('sessions')}")


if __name__ == "__main__":
    app()
