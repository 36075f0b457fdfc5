import logging

import pytest

from conftest import make_cfg
from dosewatch.core.logging_utils import kv, level_of, setup_logging


@pytest.fixture
def restore_loggers():
    names = ("dosewatch", "dosewatch.poller", "httpx", "apscheduler")
    saved = {n: (logging.getLogger(n).level, list(logging.getLogger(n).handlers)) for n in names}
    yield
    for n, (level, handlers) in saved.items():
        lg = logging.getLogger(n)
        for h in list(lg.handlers):
            lg.removeHandler(h)
            h.close()
        for h in handlers:
            lg.addHandler(h)
        lg.setLevel(level)
    logging.getLogger("dosewatch").propagate = True


def test_file_path_console_level_and_component_levels(tmp_path, restore_loggers):
    path = tmp_path / "nested" / "dw.log"
    cfg = make_cfg(
        LOG_FILE=str(path),
        CONSOLE_LOG_LEVEL="warning",
        LOG_LEVELS={"dosewatch.poller": "INFO", "httpx": "ERROR"},
    )

    app = setup_logging(cfg)

    file_h, console_h = app.handlers
    assert file_h.level == logging.DEBUG and file_h.baseFilename == str(path)
    assert console_h.level == logging.WARNING
    assert logging.getLogger("dosewatch.poller").level == logging.INFO
    assert logging.getLogger("httpx").level == logging.ERROR

    logging.getLogger("dosewatch.dispatcher").debug("dispatch.trace " + kv(n=1))
    logging.getLogger("dosewatch.poller").debug("poll.empty")
    file_h.flush()
    text = path.read_text(encoding="utf-8")
    assert "dispatch.trace n=1" in text
    assert "poll.empty" not in text


def test_setup_twice_does_not_duplicate_handlers(tmp_path, restore_loggers):
    cfg = make_cfg(LOG_FILE=str(tmp_path / "dw.log"))
    setup_logging(cfg)
    app = setup_logging(cfg)
    assert len(app.handlers) == 2


def test_level_of():
    assert level_of("debug") == logging.DEBUG
    assert level_of(30) == 30
    with pytest.raises(ValueError):
        level_of("LOUD")
