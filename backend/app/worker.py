from __future__ import annotations
import argparse
from redis import Redis
from rq import Worker
import structlog
from app.config import settings
from app.logging_setup import configure_logging
import app.models.user  # register tables referenced by media foreign keys
import app.models.event
import app.models.media

def main(argv=None):
    parser = argparse.ArgumentParser(description="Background media processing worker")
    parser.add_argument("--queue", action="append", help="Queue name to listen on (repeatable)")
    parser.add_argument("--burst", action="store_true", help="Exit once the queues are empty")
    args = parser.parse_args(argv)

    configure_logging()
    log = structlog.get_logger()
    queues = args.queue or ["media"]
    log.info("worker_start", queues=queues, env=settings.environment)
    Worker(queues, connection=Redis.from_url(settings.redis_url)).work(burst=args.burst)

if __name__ == "__main__":
    main()
