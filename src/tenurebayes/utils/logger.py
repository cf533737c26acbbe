import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def init_logger(
    log_level: int = logging.INFO, handler: logging.Handler | None = None
) -> logging.Logger:
    """
    Initialise the logger for tenurebayes. Safe to call from every module.

    Args:
        log_level (int): The logging level. Default is logging.INFO.
        handler (logging.Handler | None): extra handler to attach, e.g. the rich
            handler from tenurebayes.ui. A handler is only attached once.
    """
    root = logging.getLogger()
    root.setLevel(log_level)
    if handler and handler not in root.handlers:
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(handler)

    return root
