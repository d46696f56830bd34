"""Orchestrator: PipelineOrchestrator(config, llm_handler).execute(context) -> PipelineResult.

Runs the enabled steps in declared order against one context. Per step: skip when
there is no input, otherwise execute with retry/backoff, record the outcome in
the run log, and continue or stop per errorHandling.stopOnError.
"""
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from docflow.errors import ConfigError, MissingDependencyError, StepExecutionError
from docflow.llm.handler import LLMHandler
from docflow.pipeline import stages
from docflow.pipeline.config_schemas import PipelineConfig
from docflow.pipeline.context import PipelineContext, PipelineError, PipelineMetrics, PipelineResult
from docflow.pipeline.factory import StepConstructor, StepFactory
from docflow.steps.base import BasePipelineStep
from docflow.trace_log import trace_entered, trace_exited

logger = logging.getLogger(__name__)

OUTPUT_SUMMARY_MAX_CHARS = 5000
_NOT_RETRIED = (ConfigError, MissingDependencyError)


def _truncate(text: str, limit: int = OUTPUT_SUMMARY_MAX_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "... [truncated]"


def _preview(text: str | None, limit: int = 200) -> str:
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


def input_count(step_type: str, context: PipelineContext) -> int | None:
    """Items a step would process. None for step types the orchestrator does not know; those are never skipped."""
    if step_type == stages.FILTER:
        return len(context.messages)
    if step_type == stages.CLASSIFY:
        return len(context.filtered_messages)
    if step_type in stages.THREAD_STEP_TYPES:
        return len(context.threads)
    if step_type in stages.PROPOSAL_STEP_TYPES:
        return context.total_proposals()
    return None


def output_count(step_type: str, context: PipelineContext) -> int | None:
    if step_type == stages.FILTER:
        return len(context.filtered_messages)
    if step_type == stages.CLASSIFY:
        return len(context.threads)
    if step_type == stages.ENRICH:
        return len(context.rag_results)
    if step_type == stages.CONTEXT_ENRICH or step_type == stages.GENERATE or step_type in stages.PROPOSAL_STEP_TYPES:
        return context.total_proposals()
    return None


def output_summary(step_type: str, context: PipelineContext) -> str:
    """Truncated JSON sample of what the step produced, for the run log."""
    if step_type == stages.FILTER:
        summary: dict[str, Any] = {
            "totalFiltered": len(context.filtered_messages),
            "sample": [
                {"id": m.id, "author": m.author, "content": _preview(m.content)}
                for m in context.filtered_messages[:10]
            ],
        }
    elif step_type == stages.CLASSIFY:
        summary = {
            "totalThreads": len(context.threads),
            "threads": [
                {
                    "id": t.id,
                    "category": t.category,
                    "summary": t.summary,
                    "messageCount": len(t.message_ids),
                    "docValueReason": t.doc_value_reason,
                }
                for t in context.threads[:10]
            ],
        }
    elif step_type == stages.ENRICH:
        summary = {
            "threadsEnriched": len(context.rag_results),
            "resultsPerThread": {tid: len(docs) for tid, docs in context.rag_results.items()},
        }
    elif step_type == stages.GENERATE:
        summary = {
            "totalProposals": context.total_proposals(),
            "proposals": [
                {
                    "threadId": tid,
                    "page": p.page,
                    "section": p.section,
                    "updateType": p.update_type,
                    "contentPreview": _preview(p.suggested_text),
                }
                for tid, proposals in context.proposals.items()
                for p in proposals[:5]
            ],
        }
    elif step_type == stages.CONTEXT_ENRICH or step_type in stages.PROPOSAL_STEP_TYPES:
        rows = [
            {
                "threadId": tid,
                "page": p.page,
                "section": p.section,
                "updateType": p.update_type,
                "warnings": len(p.warnings),
                "qualityFlags": len(p.quality_flags),
            }
            for tid, proposals in context.proposals.items()
            for p in proposals
        ]
        summary = {"totalProposals": len(rows), "proposals": rows[:10]}
        if step_type == stages.RULESET_REVIEW:
            summary["rejected"] = sum(len(p) for p in context.rejected_proposals.values())
    else:
        summary = {"note": "No summary available for this step type"}
    return _truncate(json.dumps(summary, indent=2, default=str))


class PipelineOrchestrator:
    def __init__(
        self,
        config: PipelineConfig,
        llm_handler: LLMHandler | None,
        factory: StepFactory | None = None,
        *,
        run_logging: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Build every enabled step now. Raises ConfigError (incl. UnknownStepTypeError) on bad step config."""
        self.config = config
        self.llm_handler = llm_handler
        self.factory = factory or StepFactory()
        self.run_logging = run_logging
        self._sleep = sleep
        self._last_metrics: PipelineMetrics | None = None
        if config.performance.max_concurrent_steps > 1:
            logger.warning(
                "[orchestrator] maxConcurrentSteps=%d ignored; steps run serially",
                config.performance.max_concurrent_steps,
            )
        self.steps = self._create_steps()

    def _create_steps(self) -> list[BasePipelineStep]:
        steps = []
        for step_config in self.config.steps:
            if not step_config.enabled:
                logger.debug("[orchestrator] step %s disabled", step_config.step_id)
                continue
            steps.append(self.factory.create(step_config, self.llm_handler))
        return steps

    def get_config(self) -> PipelineConfig:
        return self.config

    def register_step(self, step_type: str, constructor: StepConstructor) -> None:
        """Register a custom step type and rebuild the step list so configs naming it resolve."""
        self.factory.register(step_type, constructor)
        self.steps = self._create_steps()

    def get_metrics(self) -> PipelineMetrics | None:
        """Metrics of the last execute() call, or None before the first run."""
        return self._last_metrics

    def execute(self, context: PipelineContext) -> PipelineResult:
        started = time.perf_counter()
        trace_entered("pipeline.orchestrator.execute", batch_id=context.batch_id, pipeline_id=self.config.pipeline_id)
        logger.info(
            "[orchestrator] starting instance=%s batch=%s pipeline=%s messages=%d",
            context.instance_id, context.batch_id, self.config.pipeline_id, len(context.messages),
        )
        run_id = self._create_run_log(context)
        step_logs: list[dict[str, Any]] = []

        if not self.steps:
            logger.warning("[orchestrator] no enabled steps in pipeline %s", self.config.pipeline_id)

        for step in self.steps:
            step_started = time.perf_counter()
            entry: dict[str, Any] = {
                "stepName": step.step_id,
                "stepType": step.step_type,
                "status": "completed",
                "durationMs": 0,
            }
            count = input_count(step.step_type, context)
            if count is not None:
                entry["inputCount"] = count
            if count == 0:
                entry.update(status="skipped", outputCount=0)
                step_logs.append(entry)
                self._update_run_log(context, run_id, "running", step_logs, started)
                logger.info("[orchestrator] skipping step %s: no input to process", step.step_id)
                continue

            trace_entered(f"pipeline.step.{step.step_type}", step_id=step.step_id)
            logger.info("[orchestrator] executing step %s (%s)", step.step_id, step.step_type)
            try:
                self._execute_with_retry(step, context)
            except Exception as e:
                elapsed = int((time.perf_counter() - step_started) * 1000)
                context.metrics.step_durations[step.step_id] = elapsed
                failure = StepExecutionError(step.step_id, step.step_type, e)
                entry.update(status="failed", durationMs=elapsed, error=str(e))
                self._capture_prompt_logs(context, step.step_id, entry)
                step_logs.append(entry)
                self._update_run_log(context, run_id, "running", step_logs, started)
                context.errors.append(
                    PipelineError(
                        step_id=step.step_id,
                        message=str(failure),
                        context={"batchId": context.batch_id, "instanceId": context.instance_id, "stepType": step.step_type},
                        error=failure,
                    )
                )
                logger.error("[orchestrator] step %s failed: %s", step.step_id, e)
                if self.config.error_handling.stop_on_error:
                    logger.error("[orchestrator] stopping pipeline (stopOnError=true)")
                    break
                continue

            elapsed = int((time.perf_counter() - step_started) * 1000)
            context.metrics.step_durations[step.step_id] = elapsed
            entry.update(durationMs=elapsed, outputSummary=output_summary(step.step_type, context))
            out = output_count(step.step_type, context)
            if out is not None:
                entry["outputCount"] = out
            self._capture_prompt_logs(context, step.step_id, entry)
            step_logs.append(entry)
            self._update_run_log(context, run_id, "running", step_logs, started)
            trace_exited(f"pipeline.step.{step.step_type}", step_id=step.step_id, duration_ms=elapsed)

        result = self._build_result(context, started)
        self._update_run_log(context, run_id, "completed" if result.success else "failed", step_logs, started)
        logger.info(
            "[orchestrator] complete success=%s messages=%d threads=%d proposals=%d llm_calls=%d duration_ms=%d",
            result.success, result.messages_processed, result.threads_created, result.proposals_generated,
            result.metrics.llm_calls, result.metrics.total_duration_ms,
        )
        trace_exited("pipeline.orchestrator.execute", success=result.success)
        return result

    def _execute_with_retry(self, step: BasePipelineStep, context: PipelineContext) -> None:
        """Up to retryAttempts extra tries with delay retryDelayMs * 2**attempt. Config/dependency errors are not retried."""
        policy = self.config.error_handling
        attempt = 0
        while True:
            try:
                step.execute(context)
                return
            except _NOT_RETRIED:
                raise
            except Exception as e:
                if attempt >= policy.retry_attempts:
                    raise
                delay_ms = policy.retry_delay_ms * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "[orchestrator] step %s failed (%s), retry %d/%d in %dms",
                    step.step_id, e, attempt, policy.retry_attempts, delay_ms,
                )
                self._sleep(delay_ms / 1000)

    @staticmethod
    def _capture_prompt_logs(context: PipelineContext, step_id: str, entry: dict[str, Any]) -> None:
        """Move the step's audit entries into its run-log entry, with the first LLM call also in the flat fields."""
        entries = context.step_prompt_logs.pop(step_id, None)
        if not entries:
            return
        entry["promptEntries"] = [e.to_dict() for e in entries]
        first = next((e for e in entries if e.entry_type == "llm-call"), None)
        if first is not None:
            entry.update(
                promptId=first.prompt_id,
                promptTemplate=first.template,
                promptResolved=first.resolved,
                llmResponse=first.response,
            )

    def _build_result(self, context: PipelineContext, started: float) -> PipelineResult:
        metrics = context.metrics
        metrics.total_duration_ms = int((time.perf_counter() - started) * 1000)
        metrics.messages_processed = len(context.messages)
        metrics.threads_created = len(context.threads)
        metrics.proposals_generated = context.total_proposals()
        self._last_metrics = metrics
        return PipelineResult(
            success=not context.errors,
            messages_processed=metrics.messages_processed,
            threads_created=metrics.threads_created,
            proposals_generated=metrics.proposals_generated,
            metrics=metrics,
            errors=list(context.errors),
        )

    # --- run log; failures here are logged and never raised ---

    def _create_run_log(self, context: PipelineContext) -> int | None:
        if not self.run_logging or context.persistence is None:
            return None
        try:
            run_id = context.persistence.create_run_log(
                context.instance_id, context.batch_id, self.config.pipeline_id, len(context.messages)
            )
            logger.debug("[orchestrator] created run log %s", run_id)
            return run_id
        except Exception as e:
            logger.warning("[orchestrator] failed to create run log: %s", e)
            return None

    def _update_run_log(
        self,
        context: PipelineContext,
        run_id: int | None,
        status: str,
        step_logs: list[dict[str, Any]],
        started: float,
    ) -> None:
        if not self.run_logging or context.persistence is None or run_id is None:
            return
        fields: dict[str, Any] = {
            "status": status,
            "steps": list(step_logs),
            "outputThreads": len(context.threads),
            "outputProposals": context.total_proposals(),
            "llmCalls": context.metrics.llm_calls,
            "llmTokensUsed": context.metrics.llm_tokens_used,
            "totalDurationMs": int((time.perf_counter() - started) * 1000),
            "errorMessage": "; ".join(e.message for e in context.errors) or None,
        }
        try:
            context.persistence.update_run_log(run_id, fields)
        except Exception as e:
            logger.warning("[orchestrator] failed to update run log %s: %s", run_id, e)
