# start_worker.py
"""
Arq worker runner for Docker / local use.
Only needed when INBOUND_MODE=queue; inline mode handles messages in the API process.
"""

from arq import run_worker
from loguru import logger

from nearbuy.infrastructure.queue.arq_settings import WorkerSettings

if __name__ == "__main__":
    logger.info("Starting arq worker...")
    run_worker(WorkerSettings)
