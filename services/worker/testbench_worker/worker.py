import os
from redis import Redis
from rq import Worker, Queue

from testbench_common.log import logger

REDIS_URL = os.environ.get("REDIS_URL", "redis://redis:6379/0")
QUEUE_NAMES = [n.strip() for n in os.environ.get("TESTBENCH_QUEUE", "testbench").split(",") if n.strip()]
BURST = os.environ.get("TESTBENCH_WORKER_BURST", "0") == "1"

def log_failed_job(job, exc_type, exc_value, tb):
    # the job itself already marked its run as failed; keep rq's default handling
    logger.error(f"job {job.id} ({job.func_name}) failed: {exc_value}")
    return True

def build_worker(connection: Redis) -> Worker:
    queues = [Queue(name, connection=connection) for name in QUEUE_NAMES]
    return Worker(queues, connection=connection, exception_handlers=[log_failed_job])

def main():
    r = Redis.from_url(REDIS_URL)
    # one pipeline run per job; a worker never interleaves two runs
    w = build_worker(r)
    logger.info(f"testbench worker listening on {', '.join(QUEUE_NAMES)} (burst={BURST})")
    w.work(burst=BURST, with_scheduler=False)

if __name__ == "__main__":
    main()
