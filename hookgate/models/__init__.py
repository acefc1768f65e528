"""
Database models - import all models here so metadata.create_all can discover them.
"""
from hookgate.models.provider import Provider
from hookgate.models.incoming_event import IncomingEvent, IncomingEventAction
from hookgate.models.outgoing_event import OutgoingEvent
from hookgate.models.task_queue import TaskQueue

__all__ = [
    "Provider",
    "IncomingEvent",
    "IncomingEventAction",
    "OutgoingEvent",
    "TaskQueue",
]
