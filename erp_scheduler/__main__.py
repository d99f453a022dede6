"""
Allow the package to be run as a module: python -m erp_scheduler
"""
import logging
import os

import uvicorn

from .fastapi_app.config import get_settings


def main():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    port = int(os.getenv("FASTAPI_PORT") or settings.port)
    host = os.getenv("FASTAPI_HOST") or settings.host
    uvicorn.run("erp_scheduler.fastapi_app.main:app", host=host, port=port, log_level=settings.log_level)


if __name__ == '__main__':
    main()
