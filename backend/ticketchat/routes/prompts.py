"""
Prompt improvement endpoint.

POST /prompts/improve
Body: {outcome, currentPrompt?, type: "system" | "user"}
Response: text/event-stream of the improved prompt, streamed from the model.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ticketchat.core.logging import get_logger
from ticketchat.models.requests import ImprovePromptRequest
from ticketchat.routes.deps import get_adapter, get_orchestrator, require_user_id
from ticketchat.services.ai.orchestration import ChatOrchestrator
from ticketchat.services.ai.prompts import build_improve_messages
from ticketchat.services.ai.providers import ProviderAdapter

logger = get_logger(__name__)

router = APIRouter()


@router.post("/improve")
async def improve_prompt(
    body: ImprovePromptRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    adapter: ProviderAdapter = Depends(get_adapter),
):
    if not body.outcome.strip():
        raise HTTPException(status_code=400, detail="Outcome is required")

    provider_config, rate_config = orchestrator.resolve_provider(user_id)
    logger.info("prompt_improve_requested", prompt_type=body.type, provider=provider_config.provider)

    frames = await adapter.call(
        provider_config,
        build_improve_messages(body.outcome, body.current_prompt, body.type),
        stream=True,
        rate_config=rate_config,
    )
    return StreamingResponse(frames, media_type="text/event-stream", headers={"Cache-Control": "no-cache"})
