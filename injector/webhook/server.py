from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, status

from ..common.errors import AdmissionError
from ..config.settings import WebhookSettings
from .admission import AdmissionHandler, parse_review


def create_app(handler: Optional[AdmissionHandler] = None) -> FastAPI:
    app = FastAPI(
        title="Sidecar Injector",
        description="Mutating admission webhook that injects sidecars from named templates.",
        version="0.1.0",
    )
    if handler is not None:
        app.dependency_overrides[get_handler] = lambda: handler

    @app.post("/mutate")
    def mutate(
        payload: Any = Body(...),
        admission: AdmissionHandler = Depends(get_handler),
    ) -> Dict[str, Any]:
        try:
            review = parse_review(payload)
            return admission.review(review).to_dict()
        except AdmissionError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            ) from exc

    @app.get("/health")
    def health(admission: AdmissionHandler = Depends(get_handler)) -> Dict[str, Any]:
        snapshot = admission.store.snapshot()
        return {"status": "ok", "templates": len(snapshot.injections)}

    return app


@lru_cache()
def get_handler() -> AdmissionHandler:
    return AdmissionHandler.from_settings(WebhookSettings.from_env())


app = create_app()


__all__ = ["app", "create_app", "get_handler"]
