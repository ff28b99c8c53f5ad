from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from booking_engine.presence import PresenceEntry, PresenceService

router = APIRouter(tags=['presence'])


class PresenceResponse(BaseModel):
    user_id: int
    joined_at: datetime
    last_seen: datetime


def _to_response(entry: PresenceEntry) -> PresenceResponse:
    return PresenceResponse(user_id=entry.user_id, joined_at=entry.joined_at, last_seen=entry.last_seen)


def get_presence(request: Request) -> PresenceService:
    return request.app.state.presence_service


@router.get('', response_model=list[PresenceResponse])
def list_online_users(presence: PresenceService = Depends(get_presence)):
    return [_to_response(entry) for entry in presence.online_users()]


@router.post('/{user_id}/join', response_model=PresenceResponse)
def join(user_id: int, presence: PresenceService = Depends(get_presence)):
    return _to_response(presence.join(user_id))


@router.post('/{user_id}/heartbeat', response_model=PresenceResponse)
def heartbeat(user_id: int, presence: PresenceService = Depends(get_presence)):
    return _to_response(presence.heartbeat(user_id))


@router.delete('/{user_id}', status_code=status.HTTP_204_NO_CONTENT)
def leave(user_id: int, presence: PresenceService = Depends(get_presence)):
    if not presence.leave(user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='User is not online.',
        )
