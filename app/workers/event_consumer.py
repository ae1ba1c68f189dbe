"""Worker entry point running the patient event consumer groups."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.events_engine.config import get_event_engine_config
from app.events_engine.consumers import EventConsumer, build_consumers
from app.events_engine.consumers.groups import ALL_EVENTS_GROUP, TYPES_GROUP
from app.events_engine.runtime import get_event_log, shutdown_event_log

LOGGER = logging.getLogger("app.workers.event_consumer")

_GROUP_CHOICES = {
    TYPES_GROUP: (TYPES_GROUP,),
    ALL_EVENTS_GROUP: (ALL_EVENTS_GROUP,),
    "both": (TYPES_GROUP, ALL_EVENTS_GROUP),
}


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Consume patient events.")
    parser.add_argument(
        "--group",
        choices=sorted(_GROUP_CHOICES),
        default="both",
        help="Consumer group(s) to run in this process.",
    )
    parser.add_argument(
        "--skip-topic-setup",
        action="store_true",
        help="Do not create missing topics before subscribing.",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(consumers: List[EventConsumer]) -> None:
    def _stop(signum, frame):  # noqa: ANN001
        LOGGER.info("event_consumer_stop_requested", extra={"signal": signum})
        for consumer in consumers:
            consumer.stop()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(get_settings())
    config = get_event_engine_config()

    if not config.uses_kafka:
        LOGGER.warning("event_consumer_without_broker")
    elif not args.skip_topic_setup:
        from app.events_engine.kafka import build_admin_client, ensure_topics

        ensure_topics(build_admin_client(config.bootstrap_servers or ""), config.topic_specs)

    try:
        consumers = build_consumers(config, get_event_log(), _GROUP_CHOICES[args.group])
    except Exception:  # noqa: BLE001
        LOGGER.exception("event_consumer_start_failed")
        return 1

    _install_signal_handlers(consumers)
    threads = [
        threading.Thread(target=consumer.run_forever, name=f"consumer-{consumer.name}")
        for consumer in consumers
    ]
    for thread in threads:
        thread.start()
    # Join with a timeout so the main thread keeps receiving signals.
    while any(thread.is_alive() for thread in threads):
        for thread in threads:
            thread.join(timeout=1.0)

    shutdown_event_log()
    return 0


if __name__ == "__main__":
    sys.exit(main())
