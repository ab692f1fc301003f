import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config_loader import get_config

from .scb_client import SCBClient
from .tools import TOOLS, call_tool

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)
config = get_config()

client = SCBClient()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await client.close()


app = FastAPI(title=config.server_name, version=config.server_version, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _rpc_error(call_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": call_id, "error": {"code": code, "message": message}}


@app.get("/health")
async def health():
    return {"status": "ok", "server": config.server_name, "version": config.server_version}


@app.get("/mcp")
async def server_info():
    return {
        "name": config.server_name,
        "version": config.server_version,
        "protocol_version": config.protocol_version,
        "transport": "http",
        "tools": [tool["name"] for tool in TOOLS],
    }


@app.post("/mcp", response_class=JSONResponse)
async def json_rpc_gateway(payload: Dict[str, Any]):
    method = payload.get("method")
    call_id = payload.get("id")
    if not method:
        raise HTTPException(status_code=400, detail="Missing method")

    if payload.get("jsonrpc") != "2.0":
        return _rpc_error(call_id, -32600, "Invalid Request: jsonrpc must be '2.0'")

    if method == "initialize":
        return {
            "jsonrpc": "2.0",
            "id": call_id,
            "result": {
                "protocolVersion": config.protocol_version,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": config.server_name, "version": config.server_version},
            },
        }

    if method == "notifications/initialized":
        return {"jsonrpc": "2.0", "id": call_id, "result": {}}

    if method == "tools/list":
        return {"jsonrpc": "2.0", "id": call_id, "result": {"tools": TOOLS}}

    if method == "tools/call":
        params = payload.get("params") or {}
        tool_name = params.get("name")
        if not tool_name:
            return _rpc_error(call_id, -32602, "Invalid params: missing tool name")
        try:
            result = await call_tool(client, tool_name, params.get("arguments") or {})
        except Exception as exc:
            logger.exception("Tool %s crashed", tool_name)
            return _rpc_error(call_id, -32603, f"Internal error: {exc}")
        return {"jsonrpc": "2.0", "id": call_id, "result": result}

    return _rpc_error(call_id, -32601, f"Method not found: {method}")


def run() -> None:
    """Serve the JSON-RPC gateway with uvicorn."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.http_port)


if __name__ == "__main__":
    run()
