from enum import Enum


class Outcome(str, Enum):
    COMPLETED = "completed"
    RETRYING = "retrying"
    DISCARDED = "discarded"
