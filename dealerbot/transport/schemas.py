# dealerbot/transport/schemas.py
from pydantic import BaseModel, Field


class ChatIn(BaseModel):
    identity: str = Field(min_length=1, max_length=64)
    message: str = Field(max_length=4000)


class MutationOut(BaseModel):
    kind: str
    detail: dict = Field(default_factory=dict)


class ChatOut(BaseModel):
    reply: str
    node: str | None = None
    conversation_id: str | None = None
    mutations: list[MutationOut] = Field(default_factory=list)
