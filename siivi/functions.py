from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List

from .config import Settings
from .errors import FunctionError, GatewayError, RemoteError
from .gateway import Gateway
from .prompts import DEFAULT_PERSONALITY
from .remote import InMemoryRemoteStore, RemoteStore, SupabaseRemoteStore
from .timeutil import Clock, parse_iso, to_iso, utcnow


logger = logging.getLogger(__name__)

# deleted in this order because of foreign keys
GUEST_CASCADE = ("messages", "conversations", "profiles")
# owner-scoped side tables a guest can also write to
GUEST_SIDE_TABLES = ("drafts", "mood_logs", "reminders", "knowledge_cards", "conversation_threads")


def clear_guest_data(store: RemoteStore, body: Dict[str, Any]) -> Dict[str, Any]:
    """Remove everything a guest session left behind. Safe to call repeatedly."""
    session_id = body.get("guestSessionId") or body.get("sessionId")
    if not session_id:
        raise FunctionError(400, "Guest session ID required", {"error": "Guest session ID required"})

    logger.info("Clearing guest data for session: %s", session_id)
    deleted: Dict[str, int] = {}
    errors: Dict[str, str] = {}

    for table in GUEST_CASCADE:
        try:
            deleted[table] = store.delete(table, {"guest_session_id": session_id})
        except RemoteError as e:
            logger.error("Error deleting %s for guest %s: %s", table, session_id, e)
            errors[table] = str(e)

    for table in GUEST_SIDE_TABLES:
        try:
            deleted[table] = store.delete(table, {"user_id": session_id})
        except RemoteError as e:
            logger.error("Error deleting %s for guest %s: %s", table, session_id, e)
            errors[table] = str(e)

    return {"success": not errors, "deleted": deleted, "errors": errors}


def ai_chat(gateway: Gateway, body: Dict[str, Any]) -> Dict[str, Any]:
    kind = body.get("type", "text")
    personality = body.get("personality") or DEFAULT_PERSONALITY

    try:
        if kind == "image":
            prompt = (body.get("prompt") or "").strip()
            if not prompt:
                raise FunctionError(400, "Prompt is required for image generation",
                                    {"error": "Prompt is required for image generation"})
            result = gateway.generate_image(prompt)
            return {"imageUrl": result.url, "message": result.message}

        if kind == "text":
            messages: List[Dict[str, str]] = body.get("messages") or []
            if not messages:
                raise FunctionError(400, "Messages are required", {"error": "Messages are required"})
            content = gateway.complete(messages, personality)
            return {
                "choices": [
                    {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
                ]
            }
    except GatewayError as e:
        raise FunctionError(e.status, e.message, {"error": e.message, "code": e.code}) from e
    except ValueError as e:
        raise FunctionError(400, str(e), {"error": str(e)}) from e

    raise FunctionError(400, f"Unknown request type: {kind}", {"error": f"Unknown request type: {kind}"})


def auto_deletion(store: RemoteStore, now=None) -> Dict[str, Any]:
    """Nightly cleanup: expired guests, data past its retention window, daily counters."""
    now = now or utcnow()
    logger.info("Starting auto-deletion process...")

    try:
        purged = 0
        for profile in store.select("profiles", {"is_guest": True}):
            expires = profile.get("expires_at")
            if expires and parse_iso(expires) <= now:
                clear_guest_data(store, {"guestSessionId": profile.get("guest_session_id") or profile["id"]})
                purged += 1

        expired_conversations = 0
        for prefs in store.select("user_preferences"):
            days = prefs.get("data_retention_days")
            if not days:
                continue
            cutoff = now - timedelta(days=int(days))
            for conv in store.select("conversations", {"user_id": prefs["user_id"]}):
                stamp = conv.get("updated_at") or conv.get("created_at")
                if stamp and parse_iso(stamp) < cutoff:
                    store.delete("messages", {"conversation_id": conv["id"]})
                    store.delete("conversations", {"id": conv["id"]})
                    expired_conversations += 1

        # one filtered update per row; PostgREST refuses an update without a filter
        for profile in store.select("profiles"):
            if profile.get("daily_message_count"):
                store.update("profiles", {"daily_message_count": 0}, {"id": profile["id"]})
    except RemoteError as e:
        logger.error("Auto-deletion error: %s", e)
        raise FunctionError(500, str(e), {"success": False, "error": str(e), "timestamp": to_iso(now)}) from e

    logger.info("Auto-deletion process completed successfully")
    return {
        "success": True,
        "message": "Auto-deletion process completed",
        "timestamp": to_iso(now),
        "purged_guest_sessions": purged,
        "expired_conversations": expired_conversations,
    }


def install(store: InMemoryRemoteStore, gateway: Gateway, clock: Clock = utcnow) -> InMemoryRemoteStore:
    """Register the edge functions on an in-process backend."""
    store.register_function("clear-guest-data", lambda body: clear_guest_data(store, body))
    store.register_function("ai-chat", lambda body: ai_chat(gateway, body))
    store.register_function("auto-deletion", lambda body: auto_deletion(store, clock()))
    return store


def build_remote_store(settings: Settings, gateway: Gateway, clock: Clock = utcnow) -> RemoteStore:
    if settings.backend == "supabase":
        if not (settings.supabase_url and settings.supabase_key):
            raise RuntimeError("SIIVI_BACKEND=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        return SupabaseRemoteStore(settings.supabase_url, settings.supabase_key)
    return install(InMemoryRemoteStore(clock=clock), gateway, clock)
