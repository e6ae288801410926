"""Tests for daemon wiring, logging setup and the command line."""

import logging

from recall import daemon as daemon_module
from recall.config import Config, ConfigManager
from recall.daemon import RecallDaemon, build_parser, setup_logging


def make_config(tmp_path, enabled=True):
    config = Config()
    config.storage.data_dir = str(tmp_path / "data")
    config.sampler.enabled = enabled
    config.sampler.poll_interval_seconds = 0.01
    return config


class TestRecallDaemon:

    def test_uses_configured_database(self, tmp_path):
        daemon = RecallDaemon(make_config(tmp_path), install_signal_handlers=False)
        assert daemon.storage.db_path == str(tmp_path / "data" / "memory.db")
        assert daemon.sampler.poll_interval == 0.01

    def test_start_and_stop(self, tmp_path, monkeypatch):
        daemon = RecallDaemon(make_config(tmp_path), install_signal_handlers=False)
        started = []
        monkeypatch.setattr(daemon.sampler, "start", lambda: started.append(True))
        monkeypatch.setattr(daemon.sampler, "stop", lambda: started.append(False))

        daemon.start()
        daemon.stop()
        daemon.stop()

        assert started == [True, False]

    def test_disabled_sampler_is_not_started(self, tmp_path, monkeypatch):
        daemon = RecallDaemon(make_config(tmp_path, enabled=False), install_signal_handlers=False)
        def fail():
            raise AssertionError("sampler should stay off")

        monkeypatch.setattr(daemon.sampler, "start", fail)
        daemon.start()
        daemon.stop()

    def test_run_returns_after_stop(self, tmp_path, monkeypatch):
        daemon = RecallDaemon(make_config(tmp_path, enabled=False), install_signal_handlers=False)
        monkeypatch.setattr(daemon._stopped, "wait", lambda timeout: True)
        daemon.run()


class TestCommandLine:

    def test_parser_options(self):
        args = build_parser().parse_args(["--web", "--web-port", "9000", "--poll-interval", "1.5"])
        assert args.web
        assert args.web_port == 9000
        assert args.poll_interval == 1.5

    def test_main_applies_overrides(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(f"storage:\n  data_dir: {tmp_path / 'data'}\n")
        created = {}

        class FakeDaemon:
            def __init__(self, config, enable_web):
                created["config"] = config
                created["web"] = enable_web

            def run(self):
                created["ran"] = True

        monkeypatch.setattr(daemon_module, "RecallDaemon", FakeDaemon)
        monkeypatch.setattr(daemon_module, "setup_logging", lambda level, file: None)

        code = daemon_module.main([
            "--config", str(config_path), "--web-port", "9000", "--poll-interval", "3",
        ])

        assert code == 0
        assert created["ran"]
        assert created["web"] is False
        assert created["config"].web.port == 9000
        assert created["config"].sampler.poll_interval_seconds == 3.0

    def test_save_config_persists_overrides(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.yaml"
        monkeypatch.setattr(daemon_module, "RecallDaemon", lambda config, enable_web: FakeRun())
        monkeypatch.setattr(daemon_module, "setup_logging", lambda level, file: None)

        daemon_module.main(["--config", str(config_path), "--web-port", "9100", "--save-config"])

        saved = ConfigManager(config_path).config
        assert saved.web.port == 9100
        assert saved.sampler.poll_interval_seconds == 2.0

    def test_overrides_not_saved_by_default(self, tmp_path, monkeypatch):
        config_path = tmp_path / "config.yaml"
        monkeypatch.setattr(daemon_module, "RecallDaemon", lambda config, enable_web: FakeRun())
        monkeypatch.setattr(daemon_module, "setup_logging", lambda level, file: None)

        daemon_module.main(["--config", str(config_path), "--web-port", "9100"])

        assert not config_path.exists()

    def test_unusable_data_dir_exits_with_error(self, tmp_path, monkeypatch):
        (tmp_path / "blocker").write_text("not a directory")
        config_path = tmp_path / "config.yaml"
        config_path.write_text(f"storage:\n  data_dir: {tmp_path / 'blocker' / 'data'}\n")
        monkeypatch.setattr(daemon_module, "setup_logging", lambda level, file: None)

        assert daemon_module.main(["--config", str(config_path)]) == 1


class FakeRun:
    def run(self):
        pass


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "recall.log"
    setup_logging("DEBUG", str(log_file))
    logging.getLogger("recall.test").debug("hello from test")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "hello from test" in log_file.read_text()
    setup_logging("WARNING")
