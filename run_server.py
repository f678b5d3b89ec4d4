#!/usr/bin/env python3
"""
agentloop server launcher
Serves the conversation API (FastAPI) with uvicorn
"""
import logging
import uvicorn
from agentloop.config import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    logger.info("Starting agentloop server...")
    logger.info(f"HTTP server will run on http://{settings.http_host}:{settings.http_port}")
    logger.info(f"Completion model: {settings.openai_chat_model}, max rounds: {settings.max_rounds}")
    uvicorn.run(
        "agentloop.main:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level="info",
    )

if __name__ == "__main__":
    main()
