"""Local stand-in for the remote video composition service, for development and manual testing."""
from __future__ import annotations

import logging
import signal
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("pdf2video.local-composer")


class _State:
    def __init__(self) -> None:
        self.jobs: dict[str, Dict[str, Any]] = {}
        self.polls_until_done = 2


state = _State()


def _envelope(action: str, result: Any = None, *, error: tuple[str, str] | None = None) -> JSONResponse:
    metadata: Dict[str, Any] = {"RequestId": uuid.uuid4().hex, "Action": action}
    if error:
        metadata["Error"] = {"Code": error[0], "Message": error[1]}
    body: Dict[str, Any] = {"ResponseMetadata": metadata}
    if result is not None:
        body["Result"] = result
    return JSONResponse(body)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("Starting local composer stub")
    try:
        yield
    finally:
        state.jobs.clear()
        logger.info("Stopping local composer stub")


def create_app() -> FastAPI:
    app = FastAPI(title="Composition Service Stub", version="0.1.0", lifespan=lifespan)

    @app.post("/")
    async def openapi_action(request: Request, action: str = Query(..., alias="Action")) -> JSONResponse:
        payload: Dict[str, Any] = await request.json()

        if action == "SubmitDirectEditTaskAsync":
            segments = payload.get("EditParam", {}).get("Segments") or []
            if not segments:
                return _envelope(action, error=("InvalidParameter", "EditParam.Segments is empty"))
            req_id = uuid.uuid4().hex
            state.jobs[req_id] = {"payload": payload, "polls": 0, "vid": f"v{uuid.uuid4().hex[:12]}"}
            logger.info("Accepted composition job", extra={"req_id": req_id, "segments": len(segments)})
            return _envelope(action, {"ReqId": req_id})

        if action == "GetDirectEditResult":
            results = []
            for req_id in payload.get("ReqIds") or []:
                job = state.jobs.get(req_id)
                if job is None:
                    results.append({"ReqId": req_id, "Status": "failed", "Message": "unknown job"})
                    continue
                job["polls"] += 1
                if job["polls"] >= state.polls_until_done:
                    results.append({"ReqId": req_id, "Status": "success", "OutputVid": job["vid"]})
                else:
                    results.append({"ReqId": req_id, "Status": "processing", "Message": "Rendering"})
            return _envelope(action, results)

        if action == "GetPlayInfo":
            vid = payload.get("Vid")
            base = str(request.base_url).rstrip("/")
            return _envelope(
                action,
                {"PlayInfoList": [{"MainPlayUrl": f"{base}/videos/{vid}.mp4"}], "Vid": vid},
            )

        return _envelope(action, error=("InvalidAction", f"Unsupported action {action}"))

    return app


app = create_app()


def run(host: str = "127.0.0.1", port: int = 9000, polls_until_done: int = 2) -> None:
    """Entrypoint to run the composer stub with Uvicorn."""
    import uvicorn

    state.polls_until_done = max(1, polls_until_done)
    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def _handle_signal(*_: Any) -> None:
        server.should_exit = True

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    logger.info("Local composer stub listening", extra={"host": host, "port": port})
    try:
        server.run()
    except Exception:  # pragma: no cover - defensive logging hook
        logger.exception("Local composer stub crashed")
        raise


if __name__ == "__main__":
    run()
