from __future__ import annotations

import io
import logging

import pandas as pd
from rich.console import Console

from tenurebayes.ui import LogCaptureHandler, ModellingDisplay, print_table


def test_log_capture_handler_forwards_records():
    lines = []
    handler = LogCaptureHandler(lines.append)
    logger = logging.getLogger("tenurebayes.test")
    logger.addHandler(handler)
    try:
        logger.warning("DivergentTransition: 3 divergent transitions in chain 1")
        logger.debug("below the handler level")
    finally:
        logger.removeHandler(handler)

    assert len(lines) == 1
    assert "WARNING" in lines[0]
    assert lines[0].endswith("3 divergent transitions in chain 1")


def test_capture_logs_routes_into_display():
    display = ModellingDisplay(max_logs=2)
    with display.capture_logs(["tenurebayes.capture"]):
        logger = logging.getLogger("tenurebayes.capture")
        for i in range(3):
            logger.warning(f"message {i}")

    assert len(display.logs) == 2
    assert display.logs[-1].endswith("message 2")
    assert not any(isinstance(h, LogCaptureHandler) for h in logger.handlers)


def test_display_tasks_and_checks():
    display = ModellingDisplay()
    display.add_task("OwnershipLogit chain 0", chain=0, total=100)
    display.update_task("OwnershipLogit chain 0", advance=20)
    # unknown tasks are ignored
    display.update_task("OwnershipLogit chain 9", advance=20)
    task = display.progress.tasks[0]
    assert task.completed == 20

    display.add_check("r_hat", "pass")
    display.add_check("divergences", "fail")
    display.update_stats({"Chains": 2})
    assert display.stats["Checks passed"] == 1
    assert display.stats["Checks failed"] == 1
    assert display.stats["Chains"] == 2
    assert not display.is_live


def test_print_table():
    buffer = io.StringIO()
    console = Console(file=buffer, width=120)
    print_table(
        pd.DataFrame({"parameter": ["beta_male"], "point_estimate": [0.7312]}),
        title="coefficients",
        console=console,
    )
    output = buffer.getvalue()
    assert "beta_male" in output
    assert "0.731" in output
