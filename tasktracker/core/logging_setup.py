import logging


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # SQL echo is controlled by db_echo, not by the app log level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
