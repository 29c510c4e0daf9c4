from typing import Literal

from pydantic import BaseModel, Field, model_validator


class DevEventIn(BaseModel):
    kind: Literal[
        "message",
        "action",
        "new_member",
        "remove_member",
        "message_reaction_add",
        "message_reaction_remove",
    ] = "message"
    sender_id: str = Field(min_length=1, max_length=64)
    chat_id: str | None = Field(default=None, max_length=64)
    text: str | None = Field(default=None, max_length=4096)
    payload: str | None = Field(default=None, max_length=256)
    message_id: str | None = Field(default=None, max_length=128)

    @model_validator(mode="after")
    def _action_needs_payload(self):
        if self.kind == "action" and not self.payload:
            raise ValueError("action events require a payload")
        return self


class SentMessageOut(BaseModel):
    chat_id: str
    text: str
    attachments: int = 0
    components: list | None = None


class DispatchOut(BaseModel):
    handled: bool
    scene: str | None = None
    step: int | None = None
    session: dict
    replies: list[SentMessageOut] = []
