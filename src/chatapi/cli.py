"""Interactive demo: resolve messages typed on stdin against one bot configuration."""

import argparse
import asyncio
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Optional

from resolution.config import configure_logging, load_settings
from resolution.errors import ConfigStoreError
from resolution.pipeline import ResolutionPipeline, build_pipeline


async def _repl(pipeline: ResolutionPipeline, organization_id: Optional[str]) -> None:
    conversation_id = f"cli-{uuid.uuid4().hex[:8]}"
    start = await pipeline.start_conversation(conversation_id, organization_id)
    print(f"{start.bot_name}> {start.greeting}")
    print("Type 'exit' to quit.")
    while True:
        user_input = (await asyncio.to_thread(input, "you> ")).strip()
        if not user_input or user_input.lower() in {"exit", "quit"}:
            break
        result = await pipeline.resolve(user_input, conversation_id, organization_id)
        print(f"{start.bot_name}> {result.message}")
        print(f"  [{result.source.value} confidence={result.confidence:.2f} escalate={result.should_escalate}]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the response resolution pipeline interactively.")
    parser.add_argument("--config", default=None, help="Path to service config file (JSON or YAML).")
    parser.add_argument("--bots-dir", default=None, help="Directory of per-organization bot configs.")
    parser.add_argument("--org", default=None, help="Organization id to chat as.")
    args = parser.parse_args()

    settings = load_settings(args.config)
    if args.bots_dir:
        settings = replace(settings, bots_dir=Path(args.bots_dir))
    configure_logging(settings.log_level)

    if not settings.bots_dir.is_dir():
        print(f"Bot config directory not found: {settings.bots_dir}")
        print("Create config/bots/default.json or pass --bots-dir.")
        return

    pipeline = build_pipeline(settings)
    try:
        asyncio.run(_repl(pipeline, args.org))
    except ConfigStoreError as exc:
        print(f"Could not load bot configuration: {exc}")
    except (EOFError, KeyboardInterrupt):
        pass


if __name__ == "__main__":
    main()
