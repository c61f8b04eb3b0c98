"""Extraction executors run by workers against assigned Work."""

from quarry.extract.attributes import AttributeExtractor
from quarry.extract.chunker import TextChunker
from quarry.extract.embedder import Embedder
from quarry.extract.llm import ExtractionError
from quarry.extract.worker import ExtractionWorker, WorkerStats

__all__ = [
    "AttributeExtractor",
    "TextChunker",
    "Embedder",
    "ExtractionError",
    "ExtractionWorker",
    "WorkerStats",
]
