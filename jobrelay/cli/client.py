import asyncio
import typer
import json
import tomli_w
from typing import Optional, List
from jobrelay.client import Client, StatusPoller, StopReason
from jobrelay.common.config import PollerConfig, load_client_config

app = typer.Typer()

DEFAULT_URL = "http://localhost:8000"

def load_settings(server_url: Optional[str] = None, api_key: Optional[str] = None):
    final_url = DEFAULT_URL
    final_key = None
    poller = PollerConfig()

    try:
        config = load_client_config()
        final_url = config.server.url
        final_key = config.server.api_key
        poller = config.poller
    except FileNotFoundError:
        pass

    # Explicit options win over the config file
    if server_url and server_url != DEFAULT_URL:
        final_url = server_url
    if api_key:
        final_key = api_key

    return final_url, final_key, poller

def get_client(server_url: Optional[str] = None, api_key: Optional[str] = None) -> Client:
    final_url, final_key, _ = load_settings(server_url, api_key)
    return Client(base_url=final_url, api_key=final_key)

def watch_job(client: Client, request_id: str, poller_config: PollerConfig):
    """Poll until the job is terminal or the poller gives up. Returns the final snapshot."""
    def report(job):
        typer.echo(f"[{job.status.value}] {job.progress}% {job.message or ''}".rstrip())

    async def _watch():
        poller = StatusPoller.for_client(client, request_id, config=poller_config, on_status_change=report)
        async with poller:
            return await poller.wait()

    return asyncio.run(_watch())

def print_outcome(snapshot) -> int:
    if snapshot.stop_reason != StopReason.TERMINAL:
        typer.echo(f"Stopped checking: {snapshot.poller_error}", err=True)
        return 2
    if snapshot.error is not None:
        typer.echo(f"Job failed: {snapshot.error.name}: {snapshot.error.message}", err=True)
        return 1
    typer.echo(json.dumps(snapshot.result, indent=2))
    return 0

@app.command()
def setup():
    """Interactive wizard to create client_config.toml."""
    typer.echo("jobrelay Client Setup")

    server_url = typer.prompt("Enter Server URL", default=DEFAULT_URL)
    api_key = typer.prompt("Enter API Key (optional)", default="", show_default=False)

    server_config = {"url": server_url}
    if api_key:
        server_config["api_key"] = api_key

    config = {
        "server": server_config
    }

    with open("client_config.toml", "wb") as f:
        tomli_w.dump(config, f)

    typer.echo("client_config.toml created.")

@app.command()
def submit(
    message: str = typer.Argument(..., help="The message to send"),
    file: List[str] = typer.Option([], "--file", help="s3:// or https:// URL of a file to analyze (repeatable)"),
    workflow: bool = typer.Option(False, help="Run document analysis instead of a direct chat call"),
    session_id: Optional[str] = typer.Option(None, help="Conversation session identifier"),
    server_url: str = typer.Option(DEFAULT_URL, help="Server URL"),
    api_key: Optional[str] = typer.Option(None, envvar="JOBRELAY_API_KEY", help="API Key"),
    wait: bool = typer.Option(False, help="Poll until the job finishes")
):
    """
    Submit a new job.
    """
    final_url, final_key, poller_config = load_settings(server_url, api_key)
    client = Client(base_url=final_url, api_key=final_key)
    files = [{"url": url, "name": url.rsplit("/", 1)[-1]} for url in file]
    try:
        if workflow or files:
            job = client.start_processing(message, files=files, session_id=session_id, document_analysis=workflow)
        else:
            job = client.submit_message(message, session_id=session_id)
    except Exception as e:
        typer.echo(f"Error submitting job: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Job submitted successfully. ID: {job.id}")

    if wait:
        typer.echo("Waiting for result...")
        code = print_outcome(watch_job(client, job.id, poller_config))
        if code:
            raise typer.Exit(code=code)

@app.command()
def status(
    request_id: str = typer.Argument(..., help="Request ID returned at submission"),
    server_url: str = typer.Option(DEFAULT_URL, help="Server URL"),
    api_key: Optional[str] = typer.Option(None, envvar="JOBRELAY_API_KEY", help="API Key"),
):
    """
    Show the current status of a job.
    """
    client = get_client(server_url, api_key)
    try:
        job = client.check_status(request_id)
    except Exception as e:
        typer.echo(f"Error checking status: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Status: {job.status.value}")
    typer.echo(f"Progress: {job.progress}%")
    if job.message:
        typer.echo(f"Message: {job.message}")
    if job.result is not None:
        typer.echo("Result:")
        typer.echo(json.dumps(job.result, indent=2))
    if job.error is not None:
        typer.echo(f"Error: {job.error.name}: {job.error.message}")

@app.command()
def watch(
    request_id: str = typer.Argument(..., help="Request ID returned at submission"),
    server_url: str = typer.Option(DEFAULT_URL, help="Server URL"),
    api_key: Optional[str] = typer.Option(None, envvar="JOBRELAY_API_KEY", help="API Key"),
):
    """
    Poll a job until it finishes, the poller times out, or the server stops answering.
    """
    final_url, final_key, poller_config = load_settings(server_url, api_key)
    client = Client(base_url=final_url, api_key=final_key)
    code = print_outcome(watch_job(client, request_id, poller_config))
    if code:
        raise typer.Exit(code=code)

if __name__ == "__main__":
    app()
