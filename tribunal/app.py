# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""HTTP API for the guild tribunal engine (FastAPI).

Thin boundary over Engine: disputes, evidence, AI analysis, escalation,
tribunal votes, trust recomputation, transaction history, notifications.

The acting user arrives in the X-Actor-Id header, set by the upstream
auth layer. Engine errors map to status codes; internal invariant failures
are reported as a generic "internal error".
"""

import sys
import os
# Ensure parent directory is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tribunal.errors import EngineError
from tribunal.log import get_logger
from tribunal.service import Engine

log = get_logger(__name__)


# --- Request models ---

class RaiseDisputeRequest(BaseModel):
    bounty_id: str
    text: str
    images: list[str] = []
    links: list[str] = []

class EvidenceRequest(BaseModel):
    role: str  # "client" or "guild"
    text: str
    images: list[str] = []
    links: list[str] = []

class VoteRequest(BaseModel):
    guild_id: str
    vote: str  # "ClientWins", "GuildWins" or "Split"
    stake: int


def _actor(request: Request) -> str:
    actor = request.headers.get("X-Actor-Id", "").strip()
    if not actor:
        raise HTTPException(401, "Missing X-Actor-Id header")
    return actor


def create_app(engine: Engine | None = None) -> FastAPI:
    engine = engine or Engine(os.environ.get("TRIBUNAL_DB", ":memory:"))
    app = FastAPI(title="guild-tribunal", version="0.1.0")
    app.state.engine = engine

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        if not exc.public:
            log.critical("http.internal_error", path=request.url.path,
                         error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=exc.status_code, content={"detail": "internal error"})
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    @app.get("/")
    def root():
        return {"service": "guild-tribunal", "status": "ok"}

    @app.post("/disputes", status_code=201)
    def raise_dispute(req: RaiseDisputeRequest, request: Request):
        actor = _actor(request)
        dispute_id = engine.raise_dispute(actor, req.bounty_id, req.text, req.images, req.links)
        return {"dispute_id": dispute_id}

    @app.post("/disputes/{dispute_id}/evidence")
    def submit_evidence(dispute_id: str, req: EvidenceRequest, request: Request):
        actor = _actor(request)
        return engine.submit_evidence(actor, dispute_id, req.role, req.text, req.images, req.links)

    @app.post("/disputes/{dispute_id}/analysis")
    async def request_analysis(dispute_id: str, request: Request):
        actor = _actor(request)
        analysis = await engine.request_ai_analysis(actor, dispute_id)
        return analysis.to_dict()

    @app.post("/disputes/{dispute_id}/escalate")
    def escalate(dispute_id: str, request: Request):
        actor = _actor(request)
        return {"dispute_id": dispute_id, "jurors": engine.escalate_to_tribunal(actor, dispute_id)}

    @app.post("/disputes/{dispute_id}/vote")
    def vote(dispute_id: str, req: VoteRequest, request: Request):
        actor = _actor(request)
        receipt = engine.cast_tribunal_vote(actor, dispute_id, req.guild_id, req.vote, req.stake)
        return receipt.to_dict()

    @app.post("/disputes/{dispute_id}/settle")
    def retry_settlement(dispute_id: str, request: Request):
        _actor(request)
        ruling = engine.retry_settlement(dispute_id)
        return {"dispute_id": dispute_id, "final_ruling": ruling.value if ruling else None}

    @app.get("/disputes/{dispute_id}")
    def get_dispute(dispute_id: str, request: Request):
        _actor(request)
        return engine.get_dispute_state(dispute_id)

    @app.post("/accounts/{account_id}/trust")
    def recompute_trust(account_id: str, request: Request):
        _actor(request)
        return engine.recompute_trust(account_id).to_dict()

    @app.get("/accounts/{account_id}/transactions")
    def transactions(account_id: str, request: Request, limit: int = 100):
        actor = _actor(request)
        if actor != account_id and engine.accounts.role_in(account_id, actor) is None:
            raise HTTPException(403, "Not your account")
        return {"transactions": [t.to_dict() for t in engine.transactions(account_id, limit=limit)]}

    @app.get("/notifications")
    def notifications(request: Request, unread_only: bool = False):
        actor = _actor(request)
        items = engine.notifications.list_for(actor, unread_only=unread_only)
        return {"notifications": [n.to_dict() for n in items],
                "unread": engine.notifications.unread_count(actor)}

    @app.post("/notifications/{notification_id}/read")
    def mark_read(notification_id: str, request: Request):
        actor = _actor(request)
        engine.notifications.mark_read(actor, notification_id)
        return {"ok": True}

    return app
