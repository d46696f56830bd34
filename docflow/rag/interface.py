"""Similarity search collaborator consumed by the RAG enrich step."""
from abc import ABC, abstractmethod

from docflow.pipeline.schemas import RagDocument


class RagService(ABC):
    @abstractmethod
    def search_similar_docs(self, query: str, top_k: int) -> list[RagDocument]:
        """Documents ordered by descending similarity."""
