"""
Conversation message types.

A conversation is an ordered list of messages discriminated by ``role``:

    System | User | Assistant{tool_calls?} | Tool{tool_call_id, name}

The OpenAI-compatible chat shape is the canonical in-memory form; provider
adapters translate from it to each vendor's wire format.
"""
import json
import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class FunctionCall(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    """A function invocation requested by the model."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall

    @classmethod
    def create(cls, name: str, arguments: Dict[str, Any], call_id: Optional[str] = None) -> "ToolCall":
        return cls(
            id=call_id or synthesize_tool_call_id(),
            function=FunctionCall(name=name, arguments=json.dumps(arguments)),
        )

    @property
    def name(self) -> str:
        return self.function.name

    def parsed_arguments(self) -> Dict[str, Any]:
        """
        Decode the JSON argument string.

        Raises:
            ValueError: arguments are not a JSON object.
        """
        raw = self.function.arguments or "{}"
        value = json.loads(raw)
        if not isinstance(value, dict):
            raise ValueError("tool arguments must be a JSON object")
        return value


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    name: str


ConversationMessage = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

_conversation_adapter = TypeAdapter(List[ConversationMessage])


def parse_conversation(raw: List[Dict[str, Any]]) -> List[ConversationMessage]:
    """Validate a list of plain dicts into typed messages."""
    return _conversation_adapter.validate_python(raw)


def to_openai_message(message: ConversationMessage) -> Dict[str, Any]:
    """Serialize one message in OpenAI chat-completions shape."""
    if isinstance(message, AssistantMessage):
        payload: Dict[str, Any] = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            payload["tool_calls"] = [call.model_dump() for call in message.tool_calls]
        return payload
    if isinstance(message, ToolMessage):
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "name": message.name,
            "content": message.content,
        }
    return {"role": message.role, "content": message.content}


def synthesize_tool_call_id() -> str:
    """Tool call id for vendors that do not assign one."""
    return f"call_{uuid.uuid4().hex[:24]}"


def last_user_text(conversation: List[ConversationMessage]) -> str:
    for message in reversed(conversation):
        if isinstance(message, UserMessage):
            return message.content
    return ""
