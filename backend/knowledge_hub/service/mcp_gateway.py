"""
Model Context Protocol gateway.

Cho phép các AI client bên ngoài truy vấn kho kiến thức qua tool
`query_knowledge`: discovery qua SSE (GET /mcp), gọi tool qua JSON-RPC (POST /mcp).
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from knowledge_hub.core.exceptions import KnowledgeHubError, MethodNotFound
from knowledge_hub.service.vector_store import KnowledgeBaseInfo, VectorStore

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {"name": "knowledge-hub", "version": "1.0.0"}

TOOL_EXECUTION_ERROR = -32000
INVALID_PARAMS = -32602

NO_RESULTS_MESSAGE = "No relevant information found in the documents."

TOOLS = [
    {
        "name": "query_knowledge",
        "description": "Search for specific information within a subject knowledge base.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "subject": {"type": "string", "description": "The name of the subject (e.g., 'Math', 'ESP32', 'History')"},
                "query": {"type": "string", "description": "The specific question or search term"},
            },
            "required": ["subject", "query"],
        },
    }
]


class ToolError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def text_result(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


def rpc_result(request_id, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(request_id, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def format_sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class ToolGateway:
    def __init__(self, store: VectorStore, embedder, threshold: float = 0.7, limit: int = 3, keepalive_seconds: float = 15.0):
        self.store = store
        self.embedder = embedder
        self.threshold = threshold
        self.limit = limit
        self.keepalive_seconds = keepalive_seconds

    async def resolve_subject(self, subject: str) -> Optional[KnowledgeBaseInfo]:
        """
        Tìm kho theo tên: khớp chính xác (không phân biệt hoa thường) được ưu
        tiên; nếu không, lấy kho mới nhất trong các kho khớp chuỗi con.
        """
        matches = await self.store.find_knowledge_bases_by_title(subject.strip())
        if not matches:
            return None

        wanted = subject.strip().casefold()
        for kb in matches:
            if kb.title.casefold() == wanted:
                return kb

        if len(matches) > 1:
            logger.warning(
                "Subject '%s' matches %d knowledge bases (%s); using newest '%s'",
                subject, len(matches), ", ".join(kb.title for kb in matches), matches[0].title,
            )
        return matches[0]

    async def query_knowledge(self, subject: str, query: str) -> str:
        if not isinstance(subject, str) or not subject.strip():
            raise ToolError(INVALID_PARAMS, "Argument 'subject' is required")
        if not isinstance(query, str) or not query.strip():
            raise ToolError(INVALID_PARAMS, "Argument 'query' is required")

        kb = await self.resolve_subject(subject)
        if kb is None:
            return f"Subject '{subject}' not found."

        query_vector = await self.embedder.embed(query)
        docs = await self.store.similarity_search(kb.id, query_vector, self.threshold, self.limit)
        context = "\n\n---\n\n".join(doc.content for doc in docs)
        return context or NO_RESULTS_MESSAGE

    async def call_tool(self, name: str, arguments: dict) -> dict:
        if name != "query_knowledge":
            raise ToolError(INVALID_PARAMS, f"Unknown tool: {name}")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ToolError(INVALID_PARAMS, "Argument 'arguments' must be an object")
        text = await self.query_knowledge(arguments.get("subject"), arguments.get("query"))
        return text_result(text)

    async def handle(self, message: dict) -> Optional[dict]:
        """
        Xử lý một JSON-RPC message. Trả về response dict, hoặc None với
        notification. Method không hỗ trợ -> MethodNotFound.
        """
        method = message.get("method")
        params = message.get("params") or {}
        request_id = message.get("id")

        if isinstance(method, str) and method.startswith("notifications/"):
            return None

        if method == "initialize":
            return rpc_result(request_id, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": SERVER_INFO,
            })

        if method == "tools/list":
            return rpc_result(request_id, {"tools": TOOLS})

        if method == "tools/call":
            try:
                result = await self.call_tool(params.get("name"), params.get("arguments"))
            except ToolError as e:
                return rpc_error(request_id, e.code, e.message)
            except KnowledgeHubError as e:
                logger.error("query_knowledge failed: %s", e.message)
                return rpc_error(request_id, TOOL_EXECUTION_ERROR, e.message)
            except Exception as e:
                logger.exception("query_knowledge crashed")
                return rpc_error(request_id, TOOL_EXECUTION_ERROR, str(e))
            return rpc_result(request_id, result)

        raise MethodNotFound(f"Method not found: {method}")

    async def sse_events(self) -> AsyncIterator[str]:
        # 1. Handshake / Capabilities
        yield format_sse("endpoint", {"capabilities": {"tools": {}}})
        # 2. Tools list
        yield format_sse("tools/list_changed", {"tools": TOOLS})
        # Giữ kết nối
        while True:
            await asyncio.sleep(self.keepalive_seconds)
            yield ": ping\n\n"
