"""Application entry point for the threadkeeper server."""

from threadkeeper.app import App
from threadkeeper.config import Config
from threadkeeper.logging import setup_logging
from threadkeeper.web.runner import run_server


def main() -> None:
    config = Config()  # type: ignore[call-arg]
    setup_logging(config.debug)
    app = App(config)
    run_server(app, config)


if __name__ == "__main__":
    main()
