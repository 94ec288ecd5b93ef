import typer
import tomli_w
from jobrelay.common.config import load_worker_config
from jobrelay.worker.remote import QueueServerClient
from jobrelay.worker.services import ChatService, HttpWorkflowEngine
from jobrelay.worker.worker import Worker

app = typer.Typer()

def build_worker(config) -> Worker:
    server = QueueServerClient(config.server)
    return Worker(
        store=server,
        queue=server,
        chat=ChatService(config.llm, config.local_llm),
        engine=HttpWorkflowEngine(config.workflow_engine),
        config=config,
    )

@app.command()
def run(config: str = "worker_config.toml"):
    """Run the worker in continuous loop mode."""
    try:
        worker_config = load_worker_config(config)
    except Exception as e:
        typer.echo(f"Error loading config: {e}")
        raise typer.Exit(1)

    worker = build_worker(worker_config)
    worker.run_loop()

@app.command()
def batch(config: str = "worker_config.toml"):
    """Process whatever is queued, then exit."""
    try:
        worker_config = load_worker_config(config)
    except Exception as e:
        typer.echo(f"Error loading config: {e}")
        raise typer.Exit(1)

    worker = build_worker(worker_config)
    processed = 0
    while True:
        count = worker.run_once()
        if count == 0:
            break
        processed += count
    typer.echo(f"Processed {processed} message(s).")

@app.command()
def setup():
    """Interactive wizard to create worker_config.toml."""
    typer.echo("jobrelay Worker Setup")

    server_url = typer.prompt("Enter Server URL", default="http://localhost:8000")
    api_key = typer.prompt("Enter Worker API Key")
    engine_url = typer.prompt("Enter Workflow Engine URL", default="http://localhost:8100")

    local = typer.confirm("Are you using a local LLM server?", default=False)

    config = {
        "server": {
            "url": server_url,
            "api_key": api_key
        },
        "llm": {},
        "local_llm": {
            "enabled": False,
            "port": 11434
        },
        "workflow_engine": {
            "url": engine_url
        }
    }

    if local:
        port = typer.prompt("Which port?", default=11434, type=int)
        config["local_llm"]["enabled"] = True
        config["local_llm"]["port"] = port
    else:
        model = typer.prompt("Enter LiteLLM model name (e.g. gpt-4o)")
        config["llm"]["model"] = model

    with open("worker_config.toml", "wb") as f:
        tomli_w.dump(config, f)

    typer.echo("worker_config.toml created.")

if __name__ == "__main__":
    app()
