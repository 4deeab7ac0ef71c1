"""FastAPI application exposing audio resolution and listening paper data."""

from __future__ import annotations

import contextvars
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import CategorySpec
from ..services.audio_resolver import (
    AudioResolver,
    ContentDescriptor,
    DescriptorError,
    MatchResult,
)
from ..services.events import emit_structured_event
from ..services.fragments import FragmentAggregator


API_MARKER = "/api/"


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "exam_media_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the request id into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        request_id = _REQUEST_ID_VAR.get()
        if request_id:
            extra.setdefault("request_id", request_id)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("exam_media.events"), {})


def _log_event(message: str, **context: Any) -> None:
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context.setdefault("request_id", request_id)
    emit_structured_event("APP_EVENT", message, context=context, logger=EVENT_LOGGER)


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send)
        finally:
            _REQUEST_ID_VAR.reset(token)


class ForwardedRootPathMiddleware:
    """Mount the API under the prefix a reverse proxy forwards it from.

    The prefix comes from ``X-Forwarded-Prefix`` or, failing that, from the
    part of the path in front of ``/api/``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self._app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        prefix = _forwarded_prefix(scope) if scope.get("type") == "http" else ""
        if not prefix:
            await self._app(scope, receive, send)
            return

        adjusted_scope = dict(scope)
        adjusted_scope["root_path"] = prefix
        adjusted_scope["path"] = _strip_prefix(scope.get("path") or "/", prefix)
        raw_path = scope.get("raw_path")
        if isinstance(raw_path, (bytes, bytearray)):
            adjusted_scope["raw_path"] = _strip_prefix(raw_path.decode("latin-1"), prefix).encode(
                "latin-1"
            )
        await self._app(adjusted_scope, receive, send)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.split(",", 1)[0].strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _forwarded_prefix(scope: Scope) -> str:
    for key, value in scope.get("headers", []):
        if key.lower() == b"x-forwarded-prefix":
            return _normalize_root_path(value.decode("latin-1"))

    path = scope.get("path") or ""
    index = path.find(API_MARKER)
    if index <= 0:
        return ""
    return _normalize_root_path(path[:index])


def _strip_prefix(path: str, prefix: str) -> str:
    if path.startswith(prefix):
        path = path[len(prefix) :]
    if not path.startswith("/"):
        path = f"/{path}"
    return path


class DescriptorPayload(BaseModel):
    category: Optional[str] = None
    exam_type: Optional[str] = None
    year: int
    month: int
    sequence_index: Optional[int] = None
    paper_number: Optional[int] = None
    title: str = ""


class BatchResolvePayload(BaseModel):
    papers: List[Dict[str, Any]] = Field(default_factory=list)


def _descriptor_from(record: Mapping[str, Any]) -> ContentDescriptor:
    try:
        return ContentDescriptor.from_record(record)
    except DescriptorError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error


def _enrich_paper(record: Mapping[str, Any], result: MatchResult) -> Dict[str, Any]:
    return {
        **record,
        "audio_file": result.filename,
        "audio_url": result.public_path if result.found else None,
        "has_audio": result.found,
        "audio_info": result.to_dict(),
    }


def create_app(
    resolver: AudioResolver,
    aggregator: FragmentAggregator,
    *,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    app = FastAPI(
        title="Exam Media",
        description="Locate listening audio and assemble listening papers",
        root_path=normalized_root,
    )
    app.state.server = None
    app.state.resolver = resolver
    app.state.aggregator = aggregator
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ForwardedRootPathMiddleware)

    @app.post("/api/listening/resolve")
    def resolve_audio(payload: DescriptorPayload) -> Dict[str, Any]:
        descriptor = _descriptor_from(payload.model_dump(exclude_none=True))
        result = resolver.resolve(descriptor)
        _log_event(
            "Resolved listening audio",
            paper=descriptor.label(),
            found=result.found,
            filename=result.filename,
        )
        return {"success": True, "data": result.to_dict()}

    @app.post("/api/listening/resolve-batch")
    def resolve_audio_batch(payload: BatchResolvePayload) -> Dict[str, Any]:
        descriptors = []
        for index, record in enumerate(payload.papers):
            try:
                descriptors.append(ContentDescriptor.from_record(record))
            except DescriptorError as error:
                raise HTTPException(
                    status_code=400, detail=f"Paper #{index + 1}: {error}"
                ) from error
        batch = resolver.resolve_all(descriptors)
        papers = [
            _enrich_paper(record, result) for record, result in zip(payload.papers, batch.results)
        ]
        _log_event("Resolved listening audio batch", **batch.stats())
        return {
            "success": True,
            "data": papers,
            "count": batch.total,
            "audio_stats": batch.stats(),
        }

    @app.get("/api/listening/check-audio")
    def check_audio(
        file: str = Query("", description="Audio filename"),
        category: Optional[str] = Query(None, alias="type", description="Preferred exam category"),
    ) -> Dict[str, Any]:
        if not file.strip():
            return {"exists": False, "message": "Filename must not be empty"}
        lookup = resolver.locate(file, category)
        return lookup.to_dict()

    @app.get("/api/listening/audio/{filename}")
    def serve_audio(
        filename: str,
        category: Optional[str] = Query(None, alias="type"),
    ):
        lookup = resolver.locate(filename, category)
        if not lookup.exists or lookup.path is None:
            LOGGER.info("Audio file %s not found under any search root", filename)
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "message": "Audio file not found",
                    "searched_paths": [str(path) for path in lookup.searched],
                },
            )
        return FileResponse(lookup.path)

    def _register_public_route(spec: CategorySpec) -> None:
        def serve_public_audio(filename: str) -> FileResponse:
            lookup = resolver.locate(filename, spec.tag)
            if not lookup.exists or lookup.path is None:
                raise HTTPException(status_code=404, detail="File not found")
            return FileResponse(lookup.path)

        app.add_api_route(
            f"{spec.public_prefix}/{{filename}}",
            serve_public_audio,
            methods=["GET"],
            name=f"public_audio_{spec.tag}",
        )

    for category in resolver.categories:
        _register_public_route(category)

    @app.get("/api/listening-json/papers")
    def list_listening_papers() -> Dict[str, Any]:
        groups = aggregator.list_logical_papers()
        papers = [group.to_dict() for group in groups]
        _log_event("Listed listening papers", paper_count=len(papers))
        return {
            "success": True,
            "data": papers,
            "count": len(papers),
        }

    @app.get("/api/listening-json/papers/{paper_id}")
    def get_listening_paper(paper_id: str):
        paper = aggregator.get_paper(paper_id)
        if paper is None:
            LOGGER.info("Listening paper %s not found", paper_id)
            return JSONResponse(
                status_code=404,
                content={"success": False, "message": "Paper not found", "data": []},
            )
        payload = paper.to_dict()
        return {
            "success": True,
            "paper": payload["header"],
            "data": payload["items"],
            "count": paper.item_count,
            "file_count": paper.file_count,
        }

    @app.get("/api/debug/audio-paths")
    def debug_audio_paths() -> Dict[str, Any]:
        return {"success": True, "data": resolver.describe_base_dirs()}

    @app.get("/api/debug/listening-data")
    def debug_listening_data() -> Dict[str, Any]:
        summary = aggregator.summarize()
        summary["timestamp"] = datetime.now(timezone.utc).isoformat()
        return {"success": True, "data": summary}

    return app


__all__ = ["create_app"]
