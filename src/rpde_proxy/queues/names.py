from enum import Enum


class QueueName(str, Enum):
    POLL = "poll"
    POLL_DEAD_LETTER = "poll:deadletter"
    PURGE = "purge"
    REGISTRATION = "registration"
