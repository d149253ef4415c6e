"""
Chat endpoints.

POST /chat
Body: {messages: ConversationMessage[], sessionId}
Response: text/event-stream of delta frames, or one event frame per async
job, followed by ``data: [DONE]``.

POST /chat/title
Body: {userMessage?, assistantMessage?, sessionId?}
Response: {title}
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ticketchat.core.logging import get_logger, set_session_id
from ticketchat.models.requests import ChatRequest, ChatTitleRequest
from ticketchat.models.responses import ChatTitleResponse
from ticketchat.routes.deps import get_orchestrator, get_title_generator, require_user_id
from ticketchat.services.ai.orchestration import ChatOrchestrator, outcome_frames
from ticketchat.services.ai.titles import ChatTitleGenerator

logger = get_logger(__name__)

router = APIRouter()


@router.post("")
async def chat(
    body: ChatRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Run one chat turn.

    The whole orchestration (tool rounds and the hallucination guard)
    completes before the first frame is sent, so setup and provider errors
    are returned as JSON with a proper status code.
    """
    set_session_id(body.session_id)
    logger.info("chat_request_received", session_id=body.session_id, messages=len(body.messages))

    outcome = await orchestrator.run(body.messages, user_id, body.session_id)
    return StreamingResponse(
        outcome_frames(outcome),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/title", response_model=ChatTitleResponse)
async def chat_title(
    body: ChatTitleRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    generator: ChatTitleGenerator = Depends(get_title_generator),
):
    if not body.session_id and not (body.user_message or "").strip():
        raise HTTPException(status_code=400, detail="Either sessionId or userMessage is required")

    provider_config, rate_config = orchestrator.resolve_provider(user_id)
    try:
        title = await generator.generate(
            provider_config,
            rate_config,
            user_message=body.user_message,
            assistant_message=body.assistant_message,
            session_id=body.session_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ChatTitleResponse(title=title)
