"""Session management endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from parley.api.deps import get_session_service, require_identity
from parley.auth.context import IdentityClaim
from parley.sessions.models import Message, Session
from parley.sessions.service import SessionService

router = APIRouter()
admin_router = APIRouter()


class CreateSessionRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    model: str = Field(description="Model identifier forwarded to the completion provider")


class RenameSessionRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class MessageResponse(BaseModel):
    role: str
    content: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(role=message.role.value, content=message.content, timestamp=message.timestamp)


class SessionSummary(BaseModel):
    session_id: str
    name: str
    model: str
    owner: str
    created_at: datetime
    message_count: int

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls(
            session_id=session.session_id,
            name=session.name,
            model=session.model,
            owner=session.owner,
            created_at=session.created_at,
            message_count=len(session.messages),
        )


class SessionDetail(SessionSummary):
    messages: list[MessageResponse]

    @classmethod
    def from_session(cls, session: Session) -> "SessionDetail":
        summary = SessionSummary.from_session(session)
        return cls(
            **summary.model_dump(),
            messages=[MessageResponse.from_message(m) for m in session.messages],
        )


@router.post("/sessions", response_model=SessionSummary, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateSessionRequest,
    identity: IdentityClaim = Depends(require_identity),
    sessions: SessionService = Depends(get_session_service),
):
    session = await sessions.create(owner=identity.subject, name=request.name, model=request.model)
    return SessionSummary.from_session(session)


@router.get("/sessions", response_model=list[SessionSummary])
async def list_sessions(
    identity: IdentityClaim = Depends(require_identity),
    sessions: SessionService = Depends(get_session_service),
):
    """List the caller's sessions without their messages."""
    return [SessionSummary.from_session(s) for s in await sessions.list_for_owner(identity.subject)]


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    identity: IdentityClaim = Depends(require_identity),
    sessions: SessionService = Depends(get_session_service),
):
    session = await sessions.require_accessible(session_id, identity)
    return SessionDetail.from_session(session)


@router.put("/sessions/{session_id}", response_model=SessionSummary)
async def rename_session(
    session_id: str,
    request: RenameSessionRequest,
    identity: IdentityClaim = Depends(require_identity),
    sessions: SessionService = Depends(get_session_service),
):
    await sessions.require_accessible(session_id, identity)
    session = await sessions.rename(session_id, request.name)
    return SessionSummary.from_session(session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    identity: IdentityClaim = Depends(require_identity),
    sessions: SessionService = Depends(get_session_service),
):
    await sessions.require_accessible(session_id, identity)
    await sessions.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.get("/admin/sessions", response_model=list[SessionSummary])
async def list_all_sessions(sessions: SessionService = Depends(get_session_service)):
    """List every session. Route policy restricts this to ADMIN."""
    return [SessionSummary.from_session(s) for s in await sessions.list_all()]
