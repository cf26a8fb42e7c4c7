"""FastAPI application exposing the keyword deduplication engine."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .config import ConfigurationError, Settings, validate_output_order
from .engine import DedupEngine
from .observability import MetricsRecorder, configure_logging
from .records import (
    format_keyword_records,
    read_keyword_records,
    read_vosviewer_map,
    records_from_payload,
)
from .remote import RemoteDedupClient, RemoteDedupError

logger = logging.getLogger(__name__)

_REJECTED_HEADER = "X-Keyfold-Rejected"


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        engine: DedupEngine,
        metrics: MetricsRecorder | None,
        remote: RemoteDedupClient | None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.metrics = metrics
        self.remote = remote


def create_app(
    *,
    settings: Settings | None = None,
    engine: DedupEngine | None = None,
    metrics: MetricsRecorder | None = None,
    remote: RemoteDedupClient | None = None,
) -> FastAPI:
    """Build the FastAPI app; the synonym table is loaded eagerly so bad config fails at startup."""

    configure_logging()
    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    engine = engine or settings.build_engine(metrics=metrics)
    remote = remote or RemoteDedupClient(settings, metrics=metrics)

    app = FastAPI(title="keyfold")
    app.state.services = ApplicationState(
        settings=settings,
        engine=engine,
        metrics=metrics,
        remote=remote,
    )
    logger.info(
        "app.ready synonyms=%s order=%s remote=%s",
        len(engine.synonyms),
        engine.output_order,
        remote.backend if remote.enabled else "disabled",
    )

    @app.on_event("shutdown")
    async def _close_remote_client() -> None:
        remote.close()

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_engine(request: Request) -> DedupEngine:
        return get_state(request).engine

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    def get_remote(request: Request) -> RemoteDedupClient | None:
        return get_state(request).remote

    def _resolve_order(raw: Any) -> str | None:
        if raw is None or raw == "":
            return None
        if not isinstance(raw, str):
            raise HTTPException(status_code=400, detail="order must be a string")
        try:
            return validate_output_order(raw)
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/health", response_class=JSONResponse)
    async def health(engine: DedupEngine = Depends(get_engine)) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "synonyms": len(engine.synonyms),
                "order": engine.output_order,
                "options": engine.options.to_payload(),
            }
        )

    @app.post("/api/dedupe", response_class=JSONResponse)
    async def dedupe_records(
        request: Request,
        engine: DedupEngine = Depends(get_engine),
        remote: RemoteDedupClient | None = Depends(get_remote),
    ) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")
        items = payload.get("records")
        if not isinstance(items, list):
            raise HTTPException(status_code=400, detail="records must be a list of {k, t} objects")
        order = _resolve_order(payload.get("order"))
        backend = payload.get("backend") or "rules"
        if backend not in {"rules", "llm"}:
            raise HTTPException(status_code=400, detail="backend must be 'rules' or 'llm'")

        parsed = records_from_payload(items)
        rejected = [error.to_payload() for error in parsed.errors]

        if backend == "llm":
            if remote is None or not remote.enabled:
                raise HTTPException(status_code=503, detail="Remote deduplication backend is not configured")
            try:
                report = remote.deduplicate(parsed.records)
            except RemoteDedupError as exc:
                logger.warning("api.dedupe.remote_failed error=%s", exc)
                raise HTTPException(status_code=502, detail=str(exc)) from exc
            return JSONResponse(
                {
                    "keywords": report.to_payload(),
                    "clusters": [],
                    "stats": {
                        "records": len(parsed.records),
                        "returned": len(report.entries),
                        "rejected": len(rejected),
                        "backend": report.backend,
                        "attempts": report.attempts,
                        "unknown_keys": report.unknown_keys,
                    },
                    "rejected": rejected,
                }
            )

        result = engine.run_parsed(parsed, order=order)
        return JSONResponse(
            {
                "keywords": result.to_payload(),
                "clusters": [item.to_payload() for item in result.merged_clusters()],
                "stats": result.stats,
                "rejected": rejected,
            }
        )

    @app.post("/api/dedupe/csv")
    async def dedupe_csv(
        file: UploadFile = File(...),
        order: str | None = Form(None),
        vosviewer: bool = Form(False),
        engine: DedupEngine = Depends(get_engine),
        metrics: MetricsRecorder | None = Depends(get_metrics),
    ) -> Response:
        resolved_order = _resolve_order(order)
        raw = await file.read()
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=400, detail="Upload must be UTF-8 text") from exc

        if vosviewer:
            parsed = read_vosviewer_map(text, metrics=metrics)
        else:
            parsed = read_keyword_records(text, metrics=metrics)
        result = engine.run_parsed(parsed, order=resolved_order)
        logger.info(
            "api.dedupe.csv file=%s records=%s clusters=%s rejected=%s",
            file.filename,
            result.stats["records"],
            result.stats["clusters"],
            parsed.rejected_count,
        )
        return PlainTextResponse(
            format_keyword_records(result.entries),
            media_type="text/csv",
            headers={_REJECTED_HEADER: str(parsed.rejected_count)},
        )

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        try:
            payload = metrics.render_prometheus()
        except RuntimeError as exc:  # pragma: no cover - defensive guard
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return Response(content=payload, media_type=metrics.prometheus_content_type)

    return app


__all__ = ["ApplicationState", "create_app"]
