from docflow.rag.interface import RagService

__all__ = ["RagService"]
