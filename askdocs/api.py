# askdocs/api.py
from __future__ import annotations
from contextlib import aclosing, asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional
import json
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from .config import get_settings
from .core import AnsweringPipeline
from .errors import AskDocsError, ValidationError

log = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

pipeline = AnsweringPipeline()


def get_pipeline() -> AnsweringPipeline:
    return pipeline


# ---------- App ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await pipeline.aclose()


app = FastAPI(title="AskDocs", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Models ----------
class AnswerResponse(BaseModel):
    answer: str


class ErrorResponse(BaseModel):
    error: str


# ---------- Helpers ----------
def _error(exc: Optional[Exception], status_code: int) -> JSONResponse:
    message = exc.public_message if isinstance(exc, AskDocsError) and status_code < 500 else "Internal Server Error"
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code)


async def _read_question(request: Request) -> Optional[str]:
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    question = body.get("question")
    if not isinstance(question, str) or not question.strip():
        return None
    return question


def _streaming_enabled() -> bool:
    return get_settings().ANSWER_STREAMING


async def _relay(pieces: AsyncIterator[str], request: Request) -> AsyncIterator[str]:
    # stop pulling from the model as soon as the client is gone
    async with aclosing(pieces) as it:
        async for piece in it:
            if await request.is_disconnected():
                log.info("Client disconnected, aborting answer stream")
                return
            yield piece


# ---------- Endpoints ----------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/")
def index():
    return FileResponse(STATIC_DIR / "index.html", media_type="text/html")


@app.post(
    "/api/answer",
    response_model=AnswerResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def answer(request: Request, pipeline: AnsweringPipeline = Depends(get_pipeline)):
    """
    POST /api/answer
    Body: { "question": "What is PDQ Connect?" }
    Answer: { "answer": "..." }, or a chunked text/plain body when
    ANSWER_STREAMING is enabled.
    """
    question = await _read_question(request)
    log.info("Received question: %s", question)
    if question is None:
        return _error(ValidationError("Question is required"), 400)

    try:
        streaming = _streaming_enabled()
        result = await pipeline.answer(question, streaming=streaming)
    except ValidationError as e:
        return _error(e, 400)
    except Exception as e:
        log.exception("Error in POST /api/answer")
        return _error(e, 500)

    if streaming:
        return StreamingResponse(
            _relay(result, request),
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    log.info("Answer: %s", result)
    return AnswerResponse(answer=result)


@app.post("/api/answer/stream")
async def answer_stream(request: Request, pipeline: AnsweringPipeline = Depends(get_pipeline)):
    """
    POST /api/answer/stream
    Body: { "question": "..." }
    Server-Sent Events:
      - event: message, data: {"delta": "..."}
      - event: error, data: {"error": "Internal Server Error"}
      - event: done, data: {"ok": true/false}
    """
    question = await _read_question(request)
    if question is None:
        return _error(ValidationError("Question is required"), 400)

    try:
        pieces = await pipeline.answer(question, streaming=True)
    except ValidationError as e:
        return _error(e, 400)
    except Exception as e:
        log.exception("Error in POST /api/answer/stream")
        return _error(e, 500)

    async def gen():
        try:
            async with aclosing(pieces) as it:
                async for piece in it:
                    if await request.is_disconnected():
                        log.info("Client disconnected, aborting answer stream")
                        return
                    yield ServerSentEvent(
                        event="message",
                        data=json.dumps({"delta": piece}, ensure_ascii=False),
                    )
        except Exception:
            log.exception("Error while streaming answer")
            yield ServerSentEvent(event="error", data=json.dumps({"error": "Internal Server Error"}))
            yield ServerSentEvent(event="done", data=json.dumps({"ok": False}))
            return
        yield ServerSentEvent(event="done", data=json.dumps({"ok": True}))

    return EventSourceResponse(gen(), headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})
