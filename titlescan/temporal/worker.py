"""Temporal worker for property analysis.

Runs the analysis workflow and activity on the configured task queue,
alongside a minimal health check server.
"""

import asyncio
import os

import uvicorn
from fastapi import FastAPI
from temporalio.client import Client
from temporalio.worker import Worker

from titlescan.core.config import settings
from titlescan.temporal.activities.analysis import run_property_analysis
from titlescan.temporal.workflows.property_analysis import PropertyAnalysisWorkflow
from titlescan.utils.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(title="TitleScan Worker Health Check")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "temporal-worker"}


async def run_health_check_server():
    """Run the health check server."""
    port = int(os.getenv("WORKER_HEALTH_PORT", 8001))
    logger.info(f"Starting health check server on port {port}")
    config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


async def connect_with_retries(max_retries: int = 5, retry_delay: int = 5) -> Client:
    target = f"{settings.temporal_host}:{settings.temporal_port}"
    for attempt in range(max_retries):
        try:
            logger.info(f"Connecting to Temporal server at {target} (Attempt {attempt + 1}/{max_retries})")
            return await Client.connect(target, namespace=settings.temporal_namespace)
        except RuntimeError as e:
            if attempt < max_retries - 1:
                logger.warning(f"Connection attempt {attempt + 1} failed: {e}. Retrying in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error(f"Failed to connect to Temporal server after {max_retries} attempts: {e}")
                raise
    raise RuntimeError("Could not connect to Temporal")


async def run_worker():
    client = await connect_with_retries()
    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=[PropertyAnalysisWorkflow],
        activities=[run_property_analysis],
        max_concurrent_activities=4,
    )
    logger.info(f"Worker polling task queue '{settings.temporal_task_queue}'")
    await worker.run()


async def main():
    await asyncio.gather(run_health_check_server(), run_worker())


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")


if __name__ == "__main__":
    cli()
