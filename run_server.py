import os

import uvicorn

from gymcore.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, job_name="gymcore-api")
    logger.info("Starting gymcore API (backend=%s)", settings.backend_source)

    uvicorn.run(
        "gymcore.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
