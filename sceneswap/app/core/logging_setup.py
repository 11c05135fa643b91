import logging
import sys


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Bind the root logger to stderr once per process.

    Module loggers follow the ``sceneswap.<component>`` naming scheme and
    carry structured context through ``extra=``.
    """
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format=LOG_FORMAT,
    )
    logging.getLogger("sceneswap").setLevel(level)
