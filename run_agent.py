"""
Run Agent, end-to-end: MCP servers → MCPClient → agent loop.

This is the script that closes the loop. It:
1. Loads tool server definitions from a JSON file
2. Connects every server (stdio subprocesses and HTTP endpoints)
3. Discovers and namespaces their tools
4. Runs the agentic scheduler with a chat model
5. Prints the result

Usage:
    # List the tools the configured servers expose
    python run_agent.py --servers servers.json --list

    # Run a task
    python run_agent.py --servers servers.json --task "Summarize ./data/report.txt"

    # Use a specific model and turn limit
    python run_agent.py --servers servers.json --task "..." \\
        --model anthropic:claude-sonnet-4-5 --max-turns 5

servers.json:
    [
      {"name": "echo", "transport": "stdio",
       "command": "python", "args": ["-m", "mcp_loop.servers.echo"]},
      {"name": "search", "transport": "http", "url": "http://localhost:3000/mcp"}
    ]

Timeouts and the default turn limit come from MCP_LOOP_* environment
variables (see mcp_loop.config).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from mcp_loop import (
    AgenticScheduler,
    ChatModelService,
    ConfigError,
    ConversationStore,
    MCPClient,
    RunOptions,
    format_result,
    load_agent_settings,
    load_server_configs,
)

DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"


def load_chat_model(model: str):
    """Create a LangChain chat model from a "provider:model" string."""
    try:
        from langchain.chat_models import init_chat_model
    except ImportError as e:
        raise SystemExit(
            "Running a task needs the 'langchain' package and a provider integration "
            "(pip install 'mcp-loop[models]' langchain-anthropic)"
        ) from e
    return init_chat_model(model)


def print_tools(client: MCPClient) -> None:
    servers = client.list_servers()
    tools = client.get_tools()
    print(f"\nConnected servers ({len(servers)}):")
    for name, connected in servers.items():
        print(f"  {name:<20} {'connected' if connected else 'disconnected'}")
    print(f"\nDiscovered tools ({len(tools)}):")
    for tool in tools:
        print(f"  {tool.name:<35} {tool.description}")


async def run(args: argparse.Namespace) -> int:
    settings = load_agent_settings()

    try:
        configs = load_server_configs(args.servers) if args.servers else []
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    async with MCPClient(
        request_timeout=settings.request_timeout,
        http_timeout=settings.http_timeout,
    ) as client:
        print(f"Starting {len(configs)} MCP servers...")
        await client.initialize(configs)

        if args.list:
            print_tools(client)
            return 0

        scheduler = AgenticScheduler(
            ChatModelService(load_chat_model(args.model)),
            client,
            store=ConversationStore(),
        )
        options = RunOptions(
            session_id=args.session,
            max_turns=args.max_turns or settings.max_turns,
            max_concurrent_tools=settings.max_concurrent_tools,
            verbose=args.verbose,
        )

        print(f"\nRunning task: {args.task}\n")
        print("=" * 60)
        result = await scheduler.run(args.task, options=options)
        print(format_result(result, args.session))
        print("=" * 60)
        return 0 if result.error is None else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run an agent loop against live MCP tool servers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_agent.py --servers servers.json --list
  python run_agent.py --servers servers.json --task "Echo hello back to me"
        """,
    )
    parser.add_argument("--servers", "-s", type=str, help="JSON file with MCP server definitions")
    parser.add_argument("--list", action="store_true", help="List discovered tools and exit")
    parser.add_argument("--task", "-t", type=str, help="Task for the agent")
    parser.add_argument("--model", "-m", type=str, default=DEFAULT_MODEL, help="Chat model as provider:name")
    parser.add_argument("--session", type=str, default=None, help="Session id to tag the run with")
    parser.add_argument("--max-turns", type=int, default=None, help="Turn limit (default: MCP_LOOP_MAX_TURNS or 10)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.list and not args.task:
        parser.error("--task is required (or use --list)")
    if args.max_turns is not None and args.max_turns < 1:
        parser.error("--max-turns must be at least 1")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        # asyncio.run cancels the main task; MCPClient.__aexit__ has closed the servers.
        print("\nInterrupted, MCP servers stopped.")
        sys.exit(130)


if __name__ == "__main__":
    main()
