"""Job queue: interface, inline fallback, arq implementation and factory."""

from trawler.queue.arq_queue import ArqJobQueue
from trawler.queue.base import Job, JobQueue, QueueStatus
from trawler.queue.factory import create_job_queue
from trawler.queue.inline import InlineJobQueue

__all__ = [
    "ArqJobQueue",
    "InlineJobQueue",
    "Job",
    "JobQueue",
    "QueueStatus",
    "create_job_queue",
]
