
import json
import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from knowledge_hub.core.api.deps import get_gateway
from knowledge_hub.core.exceptions import MethodNotFound
from knowledge_hub.service.mcp_gateway import ToolGateway, rpc_error

logger = logging.getLogger(__name__)

router = APIRouter()

PARSE_ERROR = -32700


@router.get("")
async def mcp_discovery(gateway: ToolGateway = Depends(get_gateway)):
    """SSE: gửi capabilities + danh sách tool, sau đó giữ kết nối bằng ping."""
    return StreamingResponse(
        gateway.sse_events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("")
async def mcp_message(request: Request, gateway: ToolGateway = Depends(get_gateway)):
    try:
        message = json.loads(await request.body())
    except ValueError:
        return JSONResponse(rpc_error(None, PARSE_ERROR, "Parse error"), status_code=400)
    if not isinstance(message, dict):
        return JSONResponse(rpc_error(None, PARSE_ERROR, "Parse error"), status_code=400)

    try:
        response = await gateway.handle(message)
    except MethodNotFound as e:
        logger.info("MCP: %s", e.message)
        return JSONResponse({"error": "Method not found"}, status_code=404)

    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)
