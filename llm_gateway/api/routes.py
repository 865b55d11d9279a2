from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from llm_gateway.metrics import metrics_router
from llm_gateway.models.openai import ChatCompletionRequest, ChatCompletionResponse
from llm_gateway.services.chat_service import GatewayService

router = APIRouter()
router.include_router(metrics_router)

CHAT_PATHS = ("/chat/completions", "/v1/chat/completions")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


async def chat_completions(
    request: Request, payload: ChatCompletionRequest
) -> JSONResponse | StreamingResponse:
    service: GatewayService = request.app.state.gateway_service
    if payload.stream:
        frames = await service.handle_chat_stream(request, payload)
        return StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )
    return JSONResponse(content=await service.handle_chat(request, payload))


for _path in CHAT_PATHS:
    router.add_api_route(
        _path,
        chat_completions,
        methods=["POST"],
        response_model=ChatCompletionResponse,
        include_in_schema=_path == CHAT_PATHS[0],
    )
