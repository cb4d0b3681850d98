from pathlib import Path

from sleepnumber_stats import cli
from sleepnumber_stats.app import CollectorApp


def test_parser_defaults_to_working_directory_config():
    args = cli.build_parser().parse_args([])

    assert args.config == Path("sleepnumber-stats.cfg")


def test_main_reports_missing_config(tmp_path, caplog, monkeypatch):
    # keep pytest's capture handler on the root logger
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)

    assert cli.main(["--config", str(tmp_path / "missing.cfg")]) == 1
    assert "Failed to load configuration" in caplog.text


def test_main_runs_collector(tmp_path, monkeypatch):
    config_path = tmp_path / "collector.cfg"
    config_path.write_text(
        "[sleepiq]\nusername = sleeper@example.com\npassword = secret\n"
        "[influxdb]\nbucket = sleepnumber\n",
        encoding="utf-8",
    )
    started = []

    def fake_start(cls, config):
        started.append(config)
        return 0

    monkeypatch.setattr(CollectorApp, "start", classmethod(fake_start))

    assert cli.main(["-c", str(config_path)]) == 0
    assert started[0].path == config_path
    assert started[0].influxdb.bucket == "sleepnumber"
