from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from ..observability.logging import get_logger
from .base import Tool
from .notifier import PushoverNotifier

logger = get_logger("tools.contact")


class RecordUserDetailsInput(BaseModel):
    email: str = Field(..., description="The email address of this user")


class RecordUnknownQuestionInput(BaseModel):
    question: str = Field(..., description="The question that couldn't be answered")


def build_contact_tools(notifier: PushoverNotifier) -> List[Tool]:
    """
    Tools that notify the site owner about leads and unanswered questions.

    Both are safe to repeat: a duplicate call just sends another notification.
    """

    async def record_user_details(input_data: RecordUserDetailsInput) -> Dict[str, Any]:
        logger.info("record_user_details called")
        data = await notifier.send(
            "User is interested in being in touch and provided an email address "
            f"{input_data.email}"
        )
        return {"success": True, "data": data}

    async def record_unknown_question(input_data: RecordUnknownQuestionInput) -> Dict[str, Any]:
        logger.info("record_unknown_question called")
        data = await notifier.send(f'Question: "{input_data.question}" couldn\'t be answered')
        return {"success": True, "data": data}

    return [
        Tool(
            name="record_user_details",
            description=(
                "Use this tool to record that a user is interested in being in touch "
                "and provided an email address"
            ),
            input_model=RecordUserDetailsInput,
            handler=record_user_details,
        ),
        Tool(
            name="record_unknown_question",
            description=(
                "Always use this tool to record any question that couldn't be answered "
                "as you didn't know the answer"
            ),
            input_model=RecordUnknownQuestionInput,
            handler=record_unknown_question,
        ),
    ]
