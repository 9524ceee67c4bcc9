from __future__ import annotations

import logging
import signal
import sys

from taskpipe.config import settings


logger = logging.getLogger("taskpipe.worker")


def main() -> int:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Imported after logging is configured so engine creation is logged.
    from taskpipe.database import SyncSessionLocal
    from taskpipe.worker.broker import make_connection, make_dead_letter_queue, make_queue
    from taskpipe.worker.consumer import TaskConsumer
    from taskpipe.worker.tasks import SaveTask

    consumer = TaskConsumer(
        make_connection(),
        SaveTask(SyncSessionLocal),
        queue=make_queue(),
        dead_letter_queue=make_dead_letter_queue(),
        max_redeliveries=settings.consumer_max_redeliveries,
        retry_interval=settings.broker_retry_interval,
        retry_interval_max=settings.broker_retry_interval_max,
        max_connect_retries=settings.broker_connect_max_retries,
        health_file=settings.consumer_health_file,
    )

    def _request_stop(signum, frame) -> None:
        logger.info("signal %s received; stopping consumer", signum)
        consumer.stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    try:
        consumer.run_forever()
    except Exception:
        # Includes exhausting broker_connect_max_retries; a supervisor restarts us.
        logger.exception("consumer terminated health=%s", consumer.health())
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
