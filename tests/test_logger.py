from vault.commons.logger import setup_logging
from vault.commons.types import Settings


def test_setup_logging_writes_daily_file(tmp_path):
    log = setup_logging(str(tmp_path), "INFO", retention_days=3, console=False)
    log.debug("hidden")
    log.info("Report stored id=r1 owner=alice")
    log.complete()
    log.remove()

    files = list(tmp_path.rglob("app.log"))
    assert len(files) == 1
    text = files[0].read_text(encoding="utf-8")
    assert "| INFO     |" in text
    assert "Report stored id=r1 owner=alice" in text
    assert "hidden" not in text


def test_logging_settings_defaults():
    cfg = Settings.from_dict({"app": {"log_level": "DEBUG"}})
    assert cfg.app.log_retention_days == 14
    assert cfg.app.log_console is True
