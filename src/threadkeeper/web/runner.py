"""Uvicorn server runner with custom configuration."""

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from threadkeeper.app import App
from threadkeeper.config import Config
from threadkeeper.web.server import create_fastapi_app


def run_server(app: App, config: Config) -> None:
    fastapi_app = create_fastapi_app(app, config)

    log_config = LOGGING_CONFIG.copy()
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s - "%(request_line)s" %(status_code)s'
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s - %(levelname)s - %(message)s"

    # Single process: the creation worker pool lives inside the server's event loop
    uvicorn.run(fastapi_app, host=config.host, port=config.port, log_config=log_config, access_log=config.debug)
