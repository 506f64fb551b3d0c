from fastapi import APIRouter, Depends

from edulink_chat.routers.conversations import get_read_tracker
from edulink_chat.schemas.user import CurrentUser
from edulink_chat.services.read_tracker import ReadTracker
from edulink_chat.utils.dependencies import get_current_user


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("/{message_id}/read")
async def mark_message_read(message_id: str, current_user: CurrentUser = Depends(get_current_user), tracker: ReadTracker = Depends(get_read_tracker)):
    message = await tracker.mark_message_read(message_id, current_user.id)
    return {"updated": message is not None, "message": message}
