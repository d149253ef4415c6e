"""
Request models for API endpoints.

Bodies use the camelCase keys the web client sends (``sessionId``,
``jobId``); snake_case is accepted as well.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ticketchat.services.ai.messages import ConversationMessage
from ticketchat.services.tickets.compiler import FilterSpec


class ChatRequest(BaseModel):
    """Chat turn: full conversation so far."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ConversationMessage] = Field(..., min_length=1)
    session_id: Optional[str] = Field(None, alias="sessionId")


class JobRequest(BaseModel):
    """Job status / stop / process request."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId", min_length=1)


class TicketFilterRequest(BaseModel):
    """Direct filter compilation and search against one ticket service."""
    model_config = ConfigDict(populate_by_name=True)

    service_id: str = Field(..., alias="serviceId")
    filters: FilterSpec = Field(default_factory=FilterSpec)
    owner_type: Optional[Literal["user", "team", "account"]] = Field(None, alias="ownerType")
    owner_id: Optional[str] = Field(None, alias="ownerId")


class ImprovePromptRequest(BaseModel):
    """Prompt improvement request."""
    model_config = ConfigDict(populate_by_name=True)

    outcome: str = ""
    current_prompt: Optional[str] = Field(None, alias="currentPrompt")
    type: Literal["system", "user"] = "user"


class ChatTitleRequest(BaseModel):
    """Title generation: the stored session, or the first exchange."""
    model_config = ConfigDict(populate_by_name=True)

    user_message: Optional[str] = Field(None, alias="userMessage")
    assistant_message: Optional[str] = Field(None, alias="assistantMessage")
    session_id: Optional[str] = Field(None, alias="sessionId")


class ConnectionTestRequest(BaseModel):
    """Credential check for one stored connection."""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", min_length=1)
