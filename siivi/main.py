from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import FunctionError, RemoteError
from .functions import ai_chat, auto_deletion, build_remote_store, clear_guest_data
from .gateway import Gateway, build_gateway
from .prompts import DEFAULT_PERSONALITY, PERSONALITIES
from .remote import RemoteStore
from .schemas import AiChatRequest, ClearGuestDataRequest, HealthResponse, PersonalitiesResponse
from .timeutil import utcnow


logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s - %(message)s")
logger = logging.getLogger("siivi")

TABLES = {
    "profiles",
    "user_preferences",
    "conversations",
    "messages",
    "drafts",
    "mood_logs",
    "reminders",
    "knowledge_cards",
    "conversation_threads",
}

# query parameters that are not equality filters
RESERVED_PARAMS = {"order", "desc"}


def _coerce(value: str) -> Any:
    low = value.lower()
    if low == "true":
        return True
    if low == "false":
        return False
    return value


def _filters(request: Request) -> Dict[str, Any]:
    return {k: _coerce(v) for k, v in request.query_params.items() if k not in RESERVED_PARAMS}


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise HTTPException(status_code=404, detail=f"Unknown table: {table}")


def create_app(remote: Optional[RemoteStore] = None, gateway: Optional[Gateway] = None) -> FastAPI:
    settings = get_settings()
    gateway = gateway or build_gateway(settings)
    remote = remote or build_remote_store(settings, gateway)

    app = FastAPI(title="Siivi backend", version="1.0.0")
    app.state.remote = remote
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FunctionError)
    async def function_error(request: Request, exc: FunctionError):
        return JSONResponse(status_code=exc.status, content=exc.payload or {"error": exc.message})

    @app.exception_handler(RemoteError)
    async def remote_error(request: Request, exc: RemoteError):
        logger.error("Remote store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.get("/health", response_model=HealthResponse)
    def health():
        backend = "demo" if settings.demo else "gemini"
        return HealthResponse(
            ok=True,
            backend=f"{settings.backend}/{backend}",
            demo=settings.demo,
            has_gemini_key=settings.has_gemini_key,
        )

    @app.get("/api/personalities", response_model=PersonalitiesResponse)
    def personalities():
        return PersonalitiesResponse(personalities=list(PERSONALITIES), default=DEFAULT_PERSONALITY)

    # -- edge functions ------------------------------------------------

    @app.post("/functions/v1/clear-guest-data")
    def clear_guest_data_fn(payload: ClearGuestDataRequest):
        return clear_guest_data(remote, payload.model_dump())

    @app.post("/functions/v1/ai-chat")
    def ai_chat_fn(payload: AiChatRequest):
        try:
            return ai_chat(gateway, payload.model_dump())
        except FunctionError as e:
            if e.status >= 500:
                logger.error("Error in ai-chat function: %s", e.message)
            raise

    @app.post("/functions/v1/auto-deletion")
    def auto_deletion_fn():
        return auto_deletion(remote, utcnow())

    # -- table access --------------------------------------------------

    @app.get("/rest/v1/{table}")
    def select_rows(table: str, request: Request):
        _check_table(table)
        order = request.query_params.get("order")
        desc = _coerce(request.query_params.get("desc", "false")) is True
        return remote.select(table, _filters(request) or None, order_by=order, desc=desc)

    @app.post("/rest/v1/{table}", status_code=201)
    def insert_row(table: str, row: Dict[str, Any] = Body(...)):
        _check_table(table)
        return remote.insert(table, row)

    @app.patch("/rest/v1/{table}")
    def update_rows(table: str, request: Request, values: Dict[str, Any] = Body(...)):
        _check_table(table)
        filters = _filters(request)
        if not filters:
            raise HTTPException(status_code=400, detail="Refusing to update without a filter")
        return remote.update(table, values, filters)

    @app.delete("/rest/v1/{table}")
    def delete_rows(table: str, request: Request):
        _check_table(table)
        filters = _filters(request)
        if not filters:
            raise HTTPException(status_code=400, detail="Refusing to delete without a filter")
        return {"deleted": remote.delete(table, filters)}

    return app


app = create_app()
