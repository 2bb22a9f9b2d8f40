# MCP chat gateway
# Chat front-end over an LLM with approval-gated MCP tool execution

__version__ = "0.1.0"


def main() -> int:
    """CLI entry point for the application."""
    from .cli import main as cli_main

    return cli_main()
