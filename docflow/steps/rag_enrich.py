"""RAG enrich: per-thread similarity search for existing documentation."""
import re
import time

from docflow.errors import MissingDependencyError
from docflow.pipeline import stages
from docflow.pipeline.config_schemas import RagPaths
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import RagDocument
from docflow.pipeline.step_configs import RagEnrichConfig
from docflow.steps.base import BasePipelineStep

_I18N_PREFIX = re.compile(r"^i18n/[a-z]{2}(-[A-Z]{2})?/")
_LANG_PREFIX = re.compile(r"^[a-z]{2}(-[A-Z]{2})?/")


def glob_to_regex(pattern: str) -> re.Pattern:
    """`**` matches across directories, `*` within one segment. Case-insensitive, anchored."""
    parts = [re.escape(p).replace(r"\*", "[^/]*") for p in pattern.split("**")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE)


def filter_by_paths(docs: list[RagDocument], paths: RagPaths | None) -> list[RagDocument]:
    if paths is None:
        return docs
    exclude = [glob_to_regex(p) for p in paths.exclude]
    include = [glob_to_regex(p) for p in paths.include]
    out = []
    for doc in docs:
        if any(r.match(doc.file_path) for r in exclude):
            continue
        if include and not any(r.match(doc.file_path) for r in include):
            continue
        out.append(doc)
    return out


def deduplicate_translations(docs: list[RagDocument]) -> list[RagDocument]:
    """Collapse translated copies of one page. English (no i18n/ prefix) wins, then higher similarity."""
    seen: dict[str, RagDocument] = {}
    for doc in docs:
        base = _LANG_PREFIX.sub("", _I18N_PREFIX.sub("", doc.file_path))
        existing = seen.get(base)
        if existing is None:
            seen[base] = doc
            continue
        doc_english = not doc.file_path.startswith("i18n/")
        existing_english = not existing.file_path.startswith("i18n/")
        if doc_english != existing_english:
            if doc_english:
                seen[base] = doc
        elif doc.similarity > existing.similarity:
            seen[base] = doc
    return sorted(seen.values(), key=lambda d: d.similarity, reverse=True)


class RagEnrichStep(BasePipelineStep[RagEnrichConfig]):
    step_type = stages.ENRICH
    name = "RAG Enrichment"
    description = "Adds relevant documentation context to threads"

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        if context.rag_service is None:
            raise MissingDependencyError(self.step_id, "a RAG service")

        skip = context.domain_config.no_value_category
        threads = [t for t in context.threads if t.category != skip]
        self.logger.info("Enriching %d threads with RAG context", len(threads))
        total = 0
        for thread in threads:
            criteria = thread.rag_search_criteria
            query = criteria.semantic_query or " ".join(criteria.keywords)
            if not query.strip():
                self.logger.debug("Thread %s has no search query, skipping", thread.id)
                continue
            try:
                results = context.rag_service.search_similar_docs(query, self.settings.top_k * 2)
                docs = [d for d in results if d.similarity >= self.settings.min_similarity]
                docs = filter_by_paths(docs, context.domain_config.rag_paths)
                if self.settings.deduplicate_translations:
                    docs = deduplicate_translations(docs)
                docs = docs[: self.settings.top_k]
            except Exception as e:
                self.logger.error("Failed to enrich thread %s: %s", thread.id, e)
                context.rag_results[thread.id] = []
                continue
            context.rag_results[thread.id] = docs
            total += len(docs)
            self.log_rag_query(context, f"RAG: {(thread.summary or thread.id)[:60]}", query, docs)

        self.record_timing(context, started)
        self.logger.info("RAG enrichment complete: %d docs for %d threads", total, len(threads))
        return context
