import typer
import uvicorn
import secrets
import hashlib
import sqlite3
from jobrelay.common.db import init_db, get_db_path
from jobrelay.common.queue import JobQueue
from jobrelay.common.store import StatusStore
from jobrelay.server.sweeper import sweep_stale_jobs

app = typer.Typer()

@app.command()
def start(host: str = "0.0.0.0", port: int = 8000):
    """Start the jobrelay server."""
    typer.echo(f"Starting server on {host}:{port}")
    uvicorn.run("jobrelay.server.api:app", host=host, port=port, reload=False)

@app.command()
def setup(name: str = typer.Option("Worker", help="Name recorded for the worker key")):
    """Interactive wizard to set up the server database and issue a worker API key."""
    typer.echo("jobrelay Server Setup")

    default_db_path = get_db_path()
    db_path = typer.prompt("Where should the database be stored?", default=default_db_path)

    init_db(db_path)
    typer.echo(f"Database initialized at {db_path}")

    worker_key = f"sk-{secrets.token_hex(16)}"
    key_hash = hashlib.sha256(worker_key.encode()).hexdigest()

    conn = sqlite3.connect(db_path)
    try:
        conn.execute("INSERT INTO api_keys (key_hash, name, role) VALUES (?, ?, ?)", (key_hash, name, "WORKER"))
        conn.commit()
    except sqlite3.IntegrityError:
        typer.echo("Worker key already exists (or collision).")
    finally:
        conn.close()

    typer.echo(f"Setup complete. Your Worker Key is: {worker_key}")
    typer.echo("Run server with `jobrelay-server start`")

@app.command()
def sweep(
    max_age: float = typer.Option(1800.0, help="Seconds without a status write before a job counts as stale"),
    db_path: str = typer.Option(None, help="Database path (defaults to the user data dir)"),
):
    """Fail jobs that stopped progressing and have nothing left in the queue."""
    db_path = db_path or get_db_path()
    init_db(db_path)
    swept = sweep_stale_jobs(StatusStore(db_path), JobQueue(db_path), max_age)
    for request_id in swept:
        typer.echo(f"Marked {request_id} as FAILED")
    typer.echo(f"Swept {len(swept)} stale job(s).")

if __name__ == "__main__":
    app()
