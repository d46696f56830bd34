"""Run one batch through the pipeline from the command line.

  python -m docflow run --instance acme --messages batch.json
  python -m docflow run --instance acme --messages batch.json --pipeline fast --batch-id b-42

The messages file is a JSON list of messages (camelCase fields), or an object
{"messages": [...], "contextMessages": [...]}. Configs are read from
DOCFLOW_CONFIG_DIR, prompts from DOCFLOW_PROMPTS_DIR (packaged defaults otherwise).
No RAG service is wired here, so enabled enrich steps are switched off with a warning.
Prints the PipelineResult as JSON; exit status 0 on success, 1 on pipeline errors,
2 on bad input or configuration.
"""
import argparse
import json
import logging
import sys
import uuid
from pathlib import Path

from pydantic import ValidationError

from docflow.config import get_settings
from docflow.errors import ConfigError
from docflow.llm.provider_handler import get_llm_handler
from docflow.persistence import get_persistence
from docflow.pipeline import stages
from docflow.pipeline.config_loader import ConfigCache, ConfigLoader
from docflow.pipeline.config_schemas import PipelineConfig
from docflow.pipeline.context import create_pipeline_context
from docflow.pipeline.orchestrator import PipelineOrchestrator
from docflow.pipeline.schemas import Message
from docflow.prompts.registry import create_prompt_registry

logger = logging.getLogger(__name__)


def load_messages(path: Path) -> tuple[list[Message], list[Message]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"messages": data}
    messages = [Message.model_validate(m) for m in data.get("messages") or []]
    context = [Message.model_validate(m) for m in data.get("contextMessages") or []]
    return messages, context


def disable_rag_steps(config: PipelineConfig) -> PipelineConfig:
    """Copy of the config with enrich steps disabled, for runs without a RAG service."""
    steps = []
    for step in config.steps:
        if step.step_type == stages.ENRICH and step.enabled:
            logger.warning("[cli] no RAG service configured; disabling step %s", step.step_id)
            step = step.model_copy(update={"enabled": False})
        steps.append(step)
    return config.model_copy(update={"steps": steps})


def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    try:
        messages, context_messages = load_messages(Path(args.messages))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Could not read messages from {args.messages}: {e}", file=sys.stderr)
        return 2

    loader = ConfigLoader(settings.config_dir, ConfigCache(settings.config_cache_ttl_seconds))
    try:
        pipeline_config = disable_rag_steps(loader.load_pipeline_config(args.instance, args.pipeline))
        domain_config = loader.load_domain_config(args.instance)
        orchestrator = PipelineOrchestrator(
            pipeline_config, get_llm_handler(settings), run_logging=settings.run_logging
        )
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    context = create_pipeline_context(
        args.instance,
        args.batch_id or f"batch_{uuid.uuid4().hex[:12]}",
        messages,
        domain_config,
        create_prompt_registry(settings.prompts_dir or None, args.instance),
        context_messages=context_messages,
        persistence=get_persistence(settings.database_url),
    )
    result = orchestrator.execute(context)
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="docflow", description="Turn community messages into documentation proposals.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    run_p = sub.add_parser("run", help="Run one batch through the pipeline")
    run_p.add_argument("--instance", required=True, help="Instance (tenant) id")
    run_p.add_argument("--messages", required=True, help="JSON file with the batch's messages")
    run_p.add_argument("--pipeline", default="default", help="Pipeline id (default: default)")
    run_p.add_argument("--batch-id", default=None, help="Batch id (default: generated)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    if args.command == "run":
        return run(args)
    return 2


if __name__ == "__main__":
    sys.exit(main())
