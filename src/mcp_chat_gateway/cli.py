"""Command line entry points: serve the API or chat in the terminal."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import get_settings
from .models.tool import PendingApproval, ToolCallStatus
from .services.approval_gate import ApprovalMode

logger = logging.getLogger(__name__)

_STATUS_MARKS = {
    ToolCallStatus.SUCCESS: "ok",
    ToolCallStatus.ERROR: "error",
    ToolCallStatus.REJECTED: "rejected",
    ToolCallStatus.PENDING: "pending",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-chat-gateway",
        description="Chat with an LLM that can call tools on MCP servers",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default=None, help="Bind address (default from HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from PORT)")

    chat = subparsers.add_parser("chat", help="Interactive terminal chat")
    chat.add_argument("servers", nargs="*", help="Server ids, script paths or npm packages to connect")
    chat.add_argument(
        "--approve",
        choices=["prompt", "auto"],
        default="prompt",
        help="Ask before every tool call (prompt) or run them immediately (auto)",
    )
    return parser


async def _console_decision(approval: PendingApproval) -> bool:
    args = json.dumps(approval.args, indent=2, default=str)
    print(f"\nTool call requested: {approval.tool_name}\nArguments: {args}")
    answer = await asyncio.to_thread(input, f"Approve tool call to {approval.tool_name}? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


async def chat_loop(server_refs: List[str], approve: str = "prompt") -> None:
    """Connect to the given servers and run a read-eval-print chat loop."""
    from .main import build_services

    services = build_services(get_settings())
    registry = services["registry"]
    gate = services["approval_gate"]
    orchestrator = services["orchestrator"]

    if approve == "prompt":
        gate.set_mode(ApprovalMode.EXTERNAL)
        gate.set_decision_callback(_console_decision)
    else:
        gate.set_mode(ApprovalMode.AUTO)

    try:
        for ref in server_refs:
            try:
                connection = await registry.connect_by_path_or_package(ref)
                print(f"Connected to {connection.id} with tools: {[t.name for t in connection.tools]}")
            except Exception as e:
                print(f"Failed to connect to {ref}: {e}", file=sys.stderr)

        print("\nMCP chat started. Type your queries or 'quit' to exit.")
        while True:
            try:
                message = (await asyncio.to_thread(input, "\nQuery: ")).strip()
            except EOFError:
                break
            if message.lower() in ("quit", "exit"):
                break
            if not message:
                continue

            response = await orchestrator.chat(message)
            print(f"\n{response.content}")
            for call in response.tool_calls:
                mark = _STATUS_MARKS.get(call.status, call.status.value)
                detail = f": {call.error}" if call.error else ""
                print(f"  [{mark}] {call.name} {json.dumps(call.arguments, default=str)}{detail}")
    finally:
        gate.cancel_all()
        await registry.disconnect_all()
        await services["language_model"].close()


def serve(host: Optional[str] = None, port: Optional[int] = None) -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "mcp_chat_gateway.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=False,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the application."""
    from .main import configure_logging

    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, settings.log_dir)

    if args.command == "chat":
        try:
            asyncio.run(chat_loop(args.servers, args.approve))
        except KeyboardInterrupt:
            pass
        return 0

    serve(getattr(args, "host", None), getattr(args, "port", None))
    return 0


if __name__ == "__main__":
    sys.exit(main())
