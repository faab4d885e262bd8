import copy
import logging.config
from pathlib import Path

import uvicorn
from uvicorn.config import LOGGING_CONFIG

custom_logging = copy.deepcopy(LOGGING_CONFIG)
log_format = "%(asctime)s | %(levelprefix)s %(name)s | %(message)s"
custom_logging["formatters"]["default"]["fmt"] = log_format
custom_logging["formatters"]["access"]["fmt"] = (
    "%(asctime)s | %(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s"
)
custom_logging["formatters"]["default"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
custom_logging["formatters"]["access"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
SOURCE_DIRECTORIES = ("earnings", "pricing", "services")

# Route project loggers through uvicorn's default handler
for package in SOURCE_DIRECTORIES:
    custom_logging["loggers"][package] = {
        "handlers": ["default"],
        "level": "INFO",
        "propagate": False,
    }

PROJECT_ROOT = Path(__file__).resolve().parent

if __name__ == "__main__":
    logging.config.dictConfig(custom_logging)
    uvicorn.run(
        "services.webapp.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=[str(PROJECT_ROOT / name) for name in SOURCE_DIRECTORIES],
        log_config=None,
    )
