"""Queue, review workflow, ingestion, feed scheduling and classification workers."""

from .ingest import IngestReport, Ingestor
from .queue import ProcessingQueue
from .review import ReviewWorkflow
from .scheduler import FeedScheduler
from .worker import QueueWorker, WorkerPool

__all__ = [
    "IngestReport",
    "Ingestor",
    "ProcessingQueue",
    "ReviewWorkflow",
    "FeedScheduler",
    "QueueWorker",
    "WorkerPool",
]
