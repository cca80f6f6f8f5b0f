"""Comment editing and @-mention inbox."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from fixit.core.security import get_current_user
from fixit.models.user import User
from fixit.routers.requests import get_activity
from fixit.schemas.base import Envelope, ok
from fixit.schemas.comment import CommentResponse, CommentUpdate, MentionResponse
from fixit.services.item_activity import ItemActivityService

router = APIRouter(prefix="/comments", tags=["comments"])


@router.get("/mentions", response_model=Envelope[list[MentionResponse]])
async def list_mentions(
    unread: Optional[bool] = False,
    current_user: User = Depends(get_current_user),
    activity: ItemActivityService = Depends(get_activity),
):
    mentions = await activity.comments.mentions_for(current_user.id, unread_only=bool(unread))
    return ok([MentionResponse.model_validate(m) for m in mentions])


@router.get("/mentions/unread-count", response_model=Envelope[int])
async def unread_mention_count(
    current_user: User = Depends(get_current_user),
    activity: ItemActivityService = Depends(get_activity),
):
    return ok(await activity.comments.unread_mention_count(current_user.id))


@router.post("/mentions/read", response_model=Envelope[int])
async def mark_all_mentions_read(
    current_user: User = Depends(get_current_user),
    activity: ItemActivityService = Depends(get_activity),
):
    count = await activity.comments.mark_mentions_read(current_user.id)
    await activity.db.commit()
    return ok(count, "Mentions marked as read")


@router.post("/mentions/{mention_id}/read", response_model=Envelope[int])
async def mark_mention_read(
    mention_id: UUID,
    current_user: User = Depends(get_current_user),
    activity: ItemActivityService = Depends(get_activity),
):
    count = await activity.comments.mark_mentions_read(current_user.id, mention_id)
    await activity.db.commit()
    return ok(count, "Mention marked as read")


@router.patch("/{comment_id}", response_model=Envelope[CommentResponse])
async def update_comment(
    comment_id: UUID,
    data: CommentUpdate,
    activity: ItemActivityService = Depends(get_activity),
):
    """Edit a comment. Only its author may do so."""
    comment = await activity.update_comment(comment_id, data.message)
    return ok(CommentResponse.model_validate(comment), "Comment updated")


@router.delete("/{comment_id}", response_model=Envelope[None])
async def delete_comment(comment_id: UUID, activity: ItemActivityService = Depends(get_activity)):
    await activity.delete_comment(comment_id)
    return ok(message="Comment deleted")
