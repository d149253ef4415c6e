"""Prompt improvement: turn a desired outcome into a system or user prompt."""
from typing import List, Optional

from ticketchat.services.ai.messages import ConversationMessage, SystemMessage, UserMessage

SYSTEM_PROMPT_WRITER = (
    "You are an expert at crafting system prompts for LLMs. Your task is to take a plain English "
    "description of desired system behavior and convert it into a clear, well-structured system prompt "
    "that will effectively guide an LLM's behavior. Focus on clarity and specificity."
)

USER_PROMPT_WRITER = (
    "You are an expert at crafting user prompts for LLMs. Your task is to take a plain English "
    "description of a desired outcome and convert it into a clear, well-structured prompt that will get "
    "the best results from an LLM. Include necessary formats, specific instructions, and any constraints "
    "mentioned in the outcome description."
)


def build_improve_messages(outcome: str, current_prompt: Optional[str] = None, prompt_type: str = "user") -> List[ConversationMessage]:
    writer = SYSTEM_PROMPT_WRITER if prompt_type == "system" else USER_PROMPT_WRITER
    if current_prompt:
        request = (
            f"Here is the current {prompt_type} prompt:\n\n{current_prompt}\n\n"
            f"Please improve it based on this outcome description:\n\n{outcome}\n\n"
            "Provide only the improved prompt."
        )
    else:
        request = (
            f"Please create a {prompt_type} prompt based on this outcome description:\n\n{outcome}\n\n"
            "Provide only the prompt."
        )
    return [SystemMessage(content=writer), UserMessage(content=request)]
