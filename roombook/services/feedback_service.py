"""Room feedback service."""

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.core.exceptions import InvalidTransition, NotFoundError, ValidationError
from roombook.core.permissions import AuthorizationScoper, Principal, UserRole
from roombook.domain.feedback_state import FeedbackStatus, assert_feedback_transition
from roombook.models.feedback import RoomFeedback
from roombook.models.room import Room
from roombook.models.types import utcnow
from roombook.services.directory import RoomDirectory, room_directory

logger = logging.getLogger(__name__)


class FeedbackService:
    """Service for reporting and triaging room issues."""

    def __init__(self, rooms: RoomDirectory = room_directory) -> None:
        self.rooms = rooms
        self.scoper = AuthorizationScoper(rooms)

    async def create(
        self,
        db: AsyncSession,
        principal: Principal,
        room_id: uuid.UUID,
        message: str,
    ) -> RoomFeedback:
        message = (message or "").strip()
        if not message:
            raise ValidationError("is required", field="message")

        if await self.rooms.get(db, room_id) is None:
            raise NotFoundError("Room", str(room_id))

        now = utcnow()
        feedback = RoomFeedback(
            id=uuid.uuid4(),
            room_id=room_id,
            user_id=principal.user_id,
            message=message,
            status=FeedbackStatus.OPEN.value,
            created_at=now,
            updated_at=now,
        )
        db.add(feedback)
        await db.commit()

        logger.info(f"Feedback created: id={feedback.id} room={room_id} by={principal.user_id}")
        return feedback

    async def update_status(
        self,
        db: AsyncSession,
        principal: Principal,
        feedback_id: uuid.UUID,
        target: FeedbackStatus | str,
        comment: str | None = None,
    ) -> RoomFeedback:
        """Resolve or dismiss an OPEN report; only the room's managers may do so.

        The write only applies while the report is still OPEN, so of two
        concurrent updates exactly one wins and the other gets InvalidTransition.
        """
        feedback = await self._get(db, feedback_id)

        await self.scoper.require_room_manager(db, principal, feedback.room_id)
        assert_feedback_transition(feedback.status, target)
        target = FeedbackStatus(target)

        result = await db.execute(
            update(RoomFeedback)
            .where(
                RoomFeedback.id == feedback_id,
                RoomFeedback.status == FeedbackStatus.OPEN.value,
            )
            .values(
                status=target.value,
                resolved_by=principal.user_id,
                resolution_comment=comment,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await db.scalar(
                select(RoomFeedback.status).where(RoomFeedback.id == feedback_id)
            )
            await db.commit()
            logger.info(f"Feedback {feedback_id} already {current}; {target.value} rejected")
            raise InvalidTransition(current, target)

        await db.commit()
        feedback = await self._get(db, feedback_id)

        logger.info(f"Feedback {feedback.id} -> {feedback.status} by {principal.user_id}")
        return feedback

    @staticmethod
    async def _get(db: AsyncSession, feedback_id: uuid.UUID) -> RoomFeedback:
        result = await db.execute(
            select(RoomFeedback)
            .where(RoomFeedback.id == feedback_id)
            .execution_options(populate_existing=True)
        )
        feedback = result.scalar_one_or_none()
        if not feedback:
            raise NotFoundError("Feedback", str(feedback_id))
        return feedback

    async def list(
        self,
        db: AsyncSession,
        principal: Principal,
        room_id: uuid.UUID | None = None,
        status: FeedbackStatus | None = None,
    ) -> list[RoomFeedback]:
        query = select(RoomFeedback)

        if principal.role is UserRole.USER:
            query = query.where(RoomFeedback.user_id == principal.user_id)
        elif principal.role is UserRole.MANAGER:
            query = query.join(Room, Room.id == RoomFeedback.room_id).where(
                Room.location_id.in_(principal.location_ids)
            )

        if room_id is not None:
            query = query.where(RoomFeedback.room_id == room_id)
        if status is not None:
            query = query.where(RoomFeedback.status == FeedbackStatus(status).value)

        result = await db.execute(query.order_by(RoomFeedback.created_at.desc()))
        return list(result.scalars().all())


feedback_service = FeedbackService()
