import logging
from typing import Callable


class LogCaptureHandler(logging.Handler):
    """Forwards formatted log lines to a display callback."""

    def __init__(self, display_callback: Callable[[str], None], log_level=logging.INFO):
        super().__init__(level=log_level)
        self.display_callback = display_callback
        self.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")
        )

    def emit(self, record):
        self.display_callback(self.format(record))
