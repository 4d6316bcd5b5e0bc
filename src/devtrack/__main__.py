"""CLI entry point for devtrack."""

from __future__ import annotations

import argparse
import asyncio
import sys

from devtrack.ai.chat import ChatRequest
from devtrack.ai.exceptions import AIError
from devtrack.ai.runner import AgentOptions, ProgressUpdate
from devtrack.app import DevTrackApp
from devtrack.config import AppConfig, load_config
from devtrack.core.types import ModelTier, TaskType
from devtrack.log import setup_logging
from devtrack.storage.conversations import ConversationStore

DEFAULT_RUN_PROMPT = (
    "You are an autonomous maintenance agent for the project \"{project}\". "
    "Use the available tools to inspect the codebase and complete the task. "
    "Finish with a concise markdown report of what you found and what you changed."
)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="devtrack",
        description="Project copilot: multi-provider AI chat and headless agent runs over your codebase",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Interactive chat with the project assistant")
    _add_config_args(chat_parser)
    chat_parser.add_argument("--conversation", help="Continue an existing conversation id")
    chat_parser.add_argument("--model", help="Model id to use instead of routing")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a headless agent task")
    _add_config_args(run_parser)
    run_parser.add_argument("message", help="Task instructions for the agent")
    run_parser.add_argument("--system-prompt", help="System prompt (default: built-in maintenance prompt)")
    run_parser.add_argument("--task", choices=[t.value for t in TaskType], help="Task type used for routing")
    run_parser.add_argument("--tier", choices=[t.value for t in ModelTier], help="Force a model tier")
    run_parser.add_argument("--model", help="Model id to use instead of routing")
    run_parser.add_argument("--max-iterations", type=int, help="Maximum tool-call iterations")
    run_parser.add_argument("--max-cost", type=float, help="Stop once estimated spend exceeds this (USD)")
    run_parser.add_argument("--tools", help="Comma-separated subset of tool names")
    run_parser.add_argument("--record", metavar="NAME", help="Record the run to the run history under NAME")

    # models command
    models_parser = subparsers.add_parser("models", help="Discover and list available models")
    _add_config_args(models_parser)

    # conversations command
    convo_parser = subparsers.add_parser("conversations", help="Manage stored conversations")
    _add_config_args(convo_parser)
    convo_sub = convo_parser.add_subparsers(dest="action")
    convo_sub.add_parser("list", help="List conversations")
    show_parser = convo_sub.add_parser("show", help="Print a conversation")
    show_parser.add_argument("id")
    delete_parser = convo_sub.add_parser("delete", help="Delete a conversation")
    delete_parser.add_argument("id")

    # runs command
    runs_parser = subparsers.add_parser("runs", help="List recorded agent runs")
    _add_config_args(runs_parser)
    runs_parser.add_argument("--limit", type=int, default=20)

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load(args.config, args.env)
    setup_logging(config.log_level, config.log_format)

    match args.command:
        case "chat":
            asyncio.run(_chat(config, args.conversation, args.model))
        case "run":
            asyncio.run(_run(config, args))
        case "models":
            asyncio.run(_models(config))
        case "conversations":
            _conversations(config, args.action or "list", getattr(args, "id", None))
        case "runs":
            asyncio.run(_runs(config, args.limit))


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and add your provider API keys")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Project: {config.project_name} ({config.project_root})")
    providers = config.providers.configured()
    print(f"  Providers configured: {', '.join(providers) if providers else '(none)'}")
    print(f"  Default model: {config.ai.default_model or '(routed)'}")
    print(f"  Chat max iterations: {config.ai.chat.max_iterations}")
    print(f"  Agent max iterations: {config.ai.agent.max_iterations}")
    if config.ai.agent.max_cost is not None:
        print(f"  Agent cost cap: ${config.ai.agent.max_cost:.2f}")
    print(f"  Conversations: {config.storage.conversations_dir}")
    print(f"  Storage: {config.storage.db_path}")


async def _chat(config: AppConfig, conversation_id: str | None, model: str | None) -> None:
    app = DevTrackApp(config)
    await app.start()
    try:
        print("devtrack chat - empty line or Ctrl-D to quit")
        while True:
            try:
                line = await asyncio.to_thread(input, "\nyou> ")
            except EOFError:
                break
            if not line.strip():
                break

            request = ChatRequest(message=line, conversation_id=conversation_id, model_override=model)
            async for event in app.chat.stream(request):
                match event.type:
                    case "status" if event.content == "new_conversation":
                        conversation_id = event.conversation_id
                        print(f"[conversation {conversation_id}]")
                    case "status" if event.content not in ("thinking", None):
                        print(f"\n{event.content}")
                    case "text_delta":
                        print(event.content, end="", flush=True)
                    case "tool_call_start":
                        print(f"\n  -> {event.tool_call.friendly_name}...", flush=True)
                    case "tool_call_result":
                        print(f"  <- {event.tool_call.name} ({event.tool_call.status})")
                    case "error":
                        print(f"\nError: {event.error}", file=sys.stderr)
                    case "done":
                        cost = f"${event.cost:.4f}" if event.cost else "$0"
                        tokens = event.usage.total_tokens if event.usage else 0
                        print(f"\n[{event.model} | {tokens} tokens | {cost}]")
    finally:
        await app.stop()


async def _run(config: AppConfig, args: argparse.Namespace) -> None:
    app = DevTrackApp(config)
    await app.start()

    def on_progress(update: ProgressUpdate) -> None:
        print(f"  [{update.iteration}] {update.tool_name} (${update.cost:.4f})")

    options = AgentOptions(
        task=args.task,
        tier=ModelTier(args.tier) if args.tier else None,
        model=args.model,
        max_iterations=args.max_iterations,
        max_cost=args.max_cost,
        allowed_tools=[t.strip() for t in args.tools.split(",") if t.strip()] if args.tools else None,
        on_progress=on_progress,
    )
    system_prompt = args.system_prompt or DEFAULT_RUN_PROMPT.format(project=config.project_name)
    try:
        result, run = await app.run_agent(system_prompt, args.message, options, record_as=args.record)
    except AIError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await app.stop()

    print()
    print(result.content)
    print()
    print(
        f"[{result.model} | {result.stop_reason} | {result.iterations} iterations | "
        f"{len(result.tool_calls_made)} tool calls | {result.tokens_used} tokens | ${result.cost:.4f}]"
    )
    if run is not None:
        print(f"Recorded as {run.id}")


async def _models(config: AppConfig) -> None:
    app = DevTrackApp(config)
    if not app.ai.is_configured():
        print("No AI providers configured.", file=sys.stderr)
        sys.exit(1)
    await app.ai.discover()

    print("Available Models")
    print("=" * 50)
    for tier in ModelTier:
        models = app.ai.router.models_by_tier(tier)
        if not models:
            continue
        print(f"\n  {tier.value}")
        for m in models:
            print(
                f"    {m.id:<40} {m.provider.value:<10} "
                f"${m.cost_per_1k_input:.4f}/${m.cost_per_1k_output:.4f} per 1k"
            )
    print()
    for task in TaskType:
        try:
            print(f"  {task.value:<22} -> {app.ai.router.route(task)}")
        except AIError as e:
            print(f"  {task.value:<22} -> {e}")


def _conversations(config: AppConfig, action: str, conversation_id: str | None) -> None:
    store = ConversationStore(config.storage.conversations_dir)
    match action:
        case "list":
            summaries = store.list_conversations()
            if not summaries:
                print("No conversations.")
            for s in summaries:
                print(f"{s.id}  {s.updated:%Y-%m-%d %H:%M}  {s.title}")
        case "show":
            try:
                convo = store.load(conversation_id)
            except ValueError:
                convo = None
            if convo is None:
                print(f"Conversation not found: {conversation_id}", file=sys.stderr)
                sys.exit(1)
            print(f"{convo.title} ({convo.id})")
            for message in convo.messages:
                label = message.role if message.role != "tool" else f"tool:{message.tool_name}"
                print(f"\n[{label}] {message.content}")
        case "delete":
            try:
                deleted = store.delete(conversation_id)
            except ValueError:
                deleted = False
            if not deleted:
                print(f"Conversation not found: {conversation_id}", file=sys.stderr)
                sys.exit(1)
            print(f"Deleted {conversation_id}")


async def _runs(config: AppConfig, limit: int) -> None:
    app = DevTrackApp(config)
    await app.db.initialize()
    try:
        runs = await app.run_repo.list_runs(limit)
    finally:
        await app.db.close()
    if not runs:
        print("No recorded runs.")
    for run in runs:
        print(
            f"{run.id}  {run.started_at:%Y-%m-%d %H:%M}  {run.status:<9} {run.name}  "
            f"({run.iterations} it, ${run.cost_usd:.4f}, {len(run.changes)} changes)"
        )


if __name__ == "__main__":
    main()
