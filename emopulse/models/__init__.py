from .emotion_event import EmotionEvent
from .queue_message import QueueMessage
from .job_run import JobRun

__all__ = [
    "EmotionEvent",
    "QueueMessage",
    "JobRun",
]
