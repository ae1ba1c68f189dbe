"""Events engine package exposing publishing and consumer utilities."""

from .publisher import EventPublisher, LogEventPublisher, NullEventPublisher  # noqa: F401
from .runtime import get_event_publisher, set_event_publisher  # noqa: F401
from .schemas import EventClass, PatientEvent, PatientEventType  # noqa: F401
