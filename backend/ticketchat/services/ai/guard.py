"""
Hallucination guard for job identifiers.

Job ids only ever come from the job manager. If the model's final text
contains a UUID-shaped token while no job was created in this run, the
model made it up: a corrective system message is appended and the dispatch
loop is re-entered. After ``max_retries`` corrections a fixed apology is
returned instead of the text.
"""
import re
from typing import Awaitable, Callable, List

from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_guard_exhausted, record_guard_retry
from ticketchat.services.ai.dispatch import DispatchOutcome, FinalAnswer
from ticketchat.services.ai.messages import ConversationMessage, SystemMessage
from ticketchat.services.ai.tools import ToolContext

logger = get_logger(__name__)

JOB_ID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)

CORRECTIVE_INSTRUCTION = (
    "Your previous answer mentioned a job identifier, but no job was created. "
    "You must call the search_tickets tool to start a search. "
    "Never invent job ids or any other identifiers; only report ids returned by a tool."
)

APOLOGY_MESSAGE = (
    "Sorry, I couldn't start that search. Please try again, or narrow the request "
    "(for example by status, priority or date)."
)

Attempt = Callable[[List[ConversationMessage]], Awaitable[DispatchOutcome]]


def contains_job_reference(text: str) -> bool:
    return bool(text) and JOB_ID_PATTERN.search(text) is not None


class HallucinationGuard:
    def __init__(self, max_retries: int = 2):
        self.max_retries = max_retries

    async def run(
        self,
        attempt: Attempt,
        conversation: List[ConversationMessage],
        context: ToolContext,
    ) -> DispatchOutcome:
        retries = 0
        while True:
            outcome = await attempt(conversation)
            if not isinstance(outcome, FinalAnswer):
                return outcome
            if context.created_jobs or not contains_job_reference(outcome.text):
                outcome.guard_retries = retries
                return outcome

            if retries >= self.max_retries:
                record_guard_exhausted()
                logger.warning("guard_retries_exhausted", retries=retries)
                return FinalAnswer(text=APOLOGY_MESSAGE, iterations=outcome.iterations, guard_retries=retries)

            retries += 1
            record_guard_retry()
            logger.warning(
                "guard_fabricated_job_id",
                retry=retries,
                max_retries=self.max_retries,
                match=JOB_ID_PATTERN.search(outcome.text).group(0),
            )
            conversation.append(SystemMessage(content=CORRECTIVE_INSTRUCTION))
