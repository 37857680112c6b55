"""
Games API router for Bloker.

Players poll these endpoints; every action returns the outcome plus the
session state as the caller sees it. The caller is identified by the
X-User-Id header, which the authentication layer in front of this
service sets after verifying the user.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel

from game import (
    BetKind,
    GameError,
    InvalidAction,
    NotAParticipant,
    SessionNotFound,
)
from services.session_service import SessionService
from stores.session_store import ConcurrencyError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/games", tags=["games"])


# =============================================================================
# Request Models
# =============================================================================


class CreateGameRequest(BaseModel):
    """Open a game from an accepted challenge. The caller plays side A."""
    opponent_id: str
    display_name: str = ""
    opponent_name: str = ""


class VoteRequest(BaseModel):
    num_decks: int
    allow_peek: bool


class BetRequest(BaseModel):
    kind: BetKind
    amount: Optional[int] = None


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_session_service: Optional[SessionService] = None


def set_session_service(service: Optional[SessionService]) -> None:
    """Set the session service instance (called from main.py)."""
    global _session_service
    _session_service = service


def get_session_service_dep() -> SessionService:
    if _session_service is None:
        raise HTTPException(status_code=503, detail="Session service not initialized")
    return _session_service


def get_caller_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authenticated user id, as forwarded by the auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, SessionNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NotAParticipant):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ConcurrencyError):
        return HTTPException(status_code=409, detail="Session changed, please retry")
    return HTTPException(status_code=400, detail=str(e))


# =============================================================================
# Session Endpoints
# =============================================================================


@router.post("")
async def create_game(
    request: CreateGameRequest,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    """Create a session between the caller and their opponent."""
    if request.opponent_id == caller_id:
        raise HTTPException(status_code=400, detail="Cannot play against yourself")
    session = await service.create_session(
        caller_id,
        request.opponent_id,
        name_a=request.display_name or caller_id,
        name_b=request.opponent_name or request.opponent_id,
    )
    return session.get_state(caller_id)


@router.get("/me/active")
async def get_active_game(
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    """The caller's unfinished session, if any."""
    return {"session_id": await service.find_active_session(caller_id)}


@router.get("/me/ledger")
async def get_my_ledger(
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    """The caller's wins, losses and credit balance."""
    if service.stats is None:
        raise HTTPException(status_code=503, detail="Stats service not initialized")
    ledger = await service.stats.get_player_ledger(caller_id)
    if ledger is None:
        return {
            "user_id": caller_id,
            "wins": 0,
            "losses": 0,
            "total_winnings": 0,
            "credits": service.stats.starting_credits,
        }
    return {
        "user_id": ledger.user_id,
        "wins": ledger.wins,
        "losses": ledger.losses,
        "total_winnings": ledger.total_winnings,
        "credits": ledger.credits,
    }


@router.get("/{session_id}")
async def get_game(
    session_id: str,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    try:
        return await service.get_state(session_id, caller_id)
    except GameError as e:
        raise _http_error(e)


@router.get("/{session_id}/messages")
async def get_game_messages(
    session_id: str,
    limit: int = Query(50, ge=1, le=200),
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    """Table chat for a session, oldest first."""
    if service.chat is None:
        raise HTTPException(status_code=503, detail="Chat service not initialized")
    try:
        await service.get_state(session_id, caller_id)
    except GameError as e:
        raise _http_error(e)
    messages = await service.chat.get_messages(session_id, limit=limit)
    return {
        "messages": [
            {
                "user_id": m.user_id,
                "message": m.message,
                "is_system_message": m.is_system_message,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in messages
        ]
    }


# =============================================================================
# Action Endpoints
# =============================================================================


@router.post("/{session_id}/vote-settings")
async def vote_settings(
    session_id: str,
    request: VoteRequest,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    try:
        result = await service.submit_vote(
            session_id, caller_id, request.num_decks, request.allow_peek
        )
    except (GameError, ConcurrencyError) as e:
        raise _http_error(e)
    return result.to_dict()


@router.post("/{session_id}/bet")
async def place_bet(
    session_id: str,
    request: BetRequest,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    if request.kind == BetKind.RAISE and request.amount is None:
        raise _http_error(InvalidAction("Raise requires an amount"))
    try:
        result = await service.bet(session_id, caller_id, request.kind, request.amount)
    except (GameError, ConcurrencyError) as e:
        raise _http_error(e)
    return result.to_dict()


@router.post("/{session_id}/hit")
async def hit(
    session_id: str,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    try:
        result = await service.hit(session_id, caller_id)
    except (GameError, ConcurrencyError) as e:
        raise _http_error(e)
    return result.to_dict()


@router.post("/{session_id}/stay")
async def stay(
    session_id: str,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    try:
        result = await service.stay(session_id, caller_id)
    except (GameError, ConcurrencyError) as e:
        raise _http_error(e)
    return result.to_dict()


@router.post("/{session_id}/leave")
async def leave(
    session_id: str,
    caller_id: str = Depends(get_caller_id),
    service: SessionService = Depends(get_session_service_dep),
):
    try:
        result = await service.leave(session_id, caller_id)
    except (GameError, ConcurrencyError) as e:
        raise _http_error(e)
    return result.to_dict()
