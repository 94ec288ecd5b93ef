from fastapi import FastAPI, HTTPException, Header, Depends, Query
from typing import List, Optional, Dict, Any
import sqlite3
import hashlib
import logging
from pydantic import Field
from jobrelay.common.db import get_db_connection, get_db_path, init_db
from jobrelay.common.errors import DispatchError, JobNotFoundError
from jobrelay.common.models import CamelModel, Job, JobUpdate, QueuedMessage, RequestType, SubmitRequest, SubmitResponse
from jobrelay.common.queue import JobQueue
from jobrelay.common.store import StatusStore
from jobrelay.server.dispatcher import Dispatcher

logger = logging.getLogger("server")

app = FastAPI(title="jobrelay Job Server")

# Initialize DB on startup
@app.on_event("startup")
def startup_event():
    init_db()

def get_store() -> StatusStore:
    return StatusStore(get_db_path())

def get_queue() -> JobQueue:
    return JobQueue(get_db_path())

def get_dispatcher(store: StatusStore = Depends(get_store), queue: JobQueue = Depends(get_queue)) -> Dispatcher:
    return Dispatcher(store, queue)

async def verify_token(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    # Keys are stored as sha256 hashes by `jobrelay-server setup`
    key_hash = hashlib.sha256(parts[1].encode()).hexdigest()

    conn = get_db_connection()
    try:
        row = conn.execute("SELECT * FROM api_keys WHERE key_hash = ?", (key_hash,)).fetchone()
    finally:
        conn.close()

    if not row:
        raise HTTPException(status_code=401, detail="Invalid API Key")

    return {"key_hash": row["key_hash"], "name": row["name"], "role": row["role"]}

def _submit(dispatcher: Dispatcher, body: SubmitRequest, request_type: Optional[RequestType]) -> SubmitResponse:
    try:
        job = dispatcher.submit(body, request_type)
    except DispatchError as e:
        raise HTTPException(
            status_code=503,
            detail={"error": str(e), "requestId": e.job.request_id if e.job else None},
        )
    except sqlite3.Error as e:
        logger.error(f"Status store error during submission: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return SubmitResponse(
        request_id=job.request_id,
        status=job.status,
        progress=job.progress,
        message=job.message,
        created_at=job.created_at,
    )

@app.post("/message", response_model=SubmitResponse)
def submit_message(body: SubmitRequest, dispatcher: Dispatcher = Depends(get_dispatcher)):
    return _submit(dispatcher, body, RequestType.DIRECT)

@app.post("/startProcessing", response_model=SubmitResponse)
def start_processing(body: SubmitRequest, dispatcher: Dispatcher = Depends(get_dispatcher)):
    return _submit(dispatcher, body, None)

@app.get("/status/{request_id}", response_model=Job)
def get_status(request_id: str, store: StatusStore = Depends(get_store)):
    try:
        job = store.get(request_id)
    except sqlite3.Error as e:
        logger.error(f"Status store error reading {request_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if job is None:
        raise HTTPException(status_code=404, detail=f"No request found with ID: {request_id}")
    return job

@app.get("/summary", response_model=List[Job])
def get_summary(session_id: str = Query(..., alias="sessionId"), store: StatusStore = Depends(get_store)):
    try:
        return store.list_by_session(session_id)
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=str(e))

class FetchRequest(CamelModel):
    limit: int = Field(default=1, ge=1, le=10)
    visibility_timeout: Optional[float] = Field(default=None, gt=0)

class AckRequest(CamelModel):
    message_ids: List[str]

@app.post("/internal/queue/fetch", response_model=List[QueuedMessage])
def fetch_messages(body: FetchRequest, identity: Dict[str, Any] = Depends(verify_token), queue: JobQueue = Depends(get_queue)):
    try:
        return queue.receive(limit=body.limit, visibility_timeout=body.visibility_timeout, consumer=identity["name"])
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.post("/internal/queue/ack")
def ack_messages(body: AckRequest, identity: Dict[str, Any] = Depends(verify_token), queue: JobQueue = Depends(get_queue)):
    try:
        return {"acked": queue.ack(body.message_ids)}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.patch("/internal/status/{request_id}", response_model=Job)
def update_status(request_id: str, body: JobUpdate, identity: Dict[str, Any] = Depends(verify_token), store: StatusStore = Depends(get_store)):
    try:
        return store.update(request_id, body)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
