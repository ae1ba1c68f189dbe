"""Consumer groups for the patient event streams."""

from .base import ConsumedMessage, EventConsumer, MessageState  # noqa: F401
from .groups import build_all_events_consumer, build_consumers, build_patient_types_consumer  # noqa: F401
