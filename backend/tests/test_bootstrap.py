"""
Travis API — Bootstrap Tests
==============================

What we test:
    ✅ Setup runs once per process, however often the app is created
    ✅ Step order and the environment conditions on queue/monitoring steps
    ✅ A failed setup is rolled back and runs again on the next call
    ✅ Endpoint options and the readiness sentinel
    ✅ Deploy SHA lookup
"""

import threading

import pytest

from travis_api import database, queue
from travis_api.bootstrap import AppSetup, setup, signal_ready
from travis_api.deploy import DEFAULT_DEPLOY_SHA, deploy_sha
from travis_api.endpoints import EndpointRegistry
from travis_api.exceptions import DatabaseError


class RecordingSetup(AppSetup):
    """AppSetup whose steps only record that they ran."""

    def __init__(self):
        super().__init__()
        self.steps = []

    def setup_core(self, config):
        self.steps.append("core")

    def setup_database_connections(self, config):
        self.steps.append("database")

    def setup_queue_client(self, config):
        self.steps.append("queue_client")

    def setup_monitoring(self, config):
        self.steps.append("monitoring")

    def load_endpoints(self, config, registry):
        self.steps.append("load_endpoints")
        super().load_endpoints(config, registry)

    def setup_endpoints(self, config, registry):
        self.steps.append("setup_endpoints")
        super().setup_endpoints(config, registry)

    def rollback(self):
        self.steps.append("rollback")


class TestAppSetup:
    def test_runs_once(self, make_settings):
        guard = RecordingSetup()
        config = make_settings()

        assert guard.ensure_initialized(config, EndpointRegistry()) is True
        assert guard.ensure_initialized(config, EndpointRegistry()) is False
        assert guard.steps.count("database") == 1
        assert guard.initialized

    def test_runs_once_across_threads(self, make_settings):
        guard = RecordingSetup()
        config = make_settings()
        registry = EndpointRegistry()
        results = []

        threads = [
            threading.Thread(target=lambda: results.append(guard.ensure_initialized(config, registry)))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert guard.steps.count("core") == 1

    def test_order_in_test_environment(self, make_settings):
        guard = RecordingSetup()
        guard.ensure_initialized(make_settings(environment="test"), EndpointRegistry())
        assert guard.steps == ["core", "database", "load_endpoints", "setup_endpoints"]

    @pytest.mark.parametrize("environment", ["staging", "production"])
    def test_order_when_deployed(self, make_settings, environment):
        guard = RecordingSetup()
        guard.ensure_initialized(make_settings(environment=environment), EndpointRegistry())
        assert guard.steps == [
            "core", "database", "queue_client", "monitoring",
            "load_endpoints", "setup_endpoints",
        ]

    def test_console_skips_monitoring(self, make_settings):
        guard = RecordingSetup()
        config = make_settings(environment="production", console_mode=True)
        guard.ensure_initialized(config, EndpointRegistry())
        assert "queue_client" in guard.steps
        assert "monitoring" not in guard.steps

    def test_registers_endpoints(self, make_settings):
        registry = EndpointRegistry()
        RecordingSetup().ensure_initialized(make_settings(), registry)
        assert [e.name for e in registry] == ["home", "health", "metrics"]

    def test_metrics_endpoint_optional(self, make_settings):
        registry = EndpointRegistry()
        RecordingSetup().ensure_initialized(make_settings(enable_metrics_endpoint=False), registry)
        assert "metrics" not in registry

    def test_runs_endpoint_setup_hooks(self, make_settings, downstream):
        configured = []

        class HookedSetup(RecordingSetup):
            def load_endpoints(self, config, registry):
                registry.register("hooks", "/hooks", downstream.router, setup_hook=configured.append)

        config = make_settings()
        HookedSetup().ensure_initialized(config, EndpointRegistry())
        assert configured == [config]


class FlakySetup(RecordingSetup):
    """Endpoint setup hooks fail on the first run only."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    def setup_endpoints(self, config, registry):
        super().setup_endpoints(config, registry)
        if self.failures:
            self.failures -= 1
            raise RuntimeError("hook failed")


class TestFailedSetup:
    def test_retried_after_failure(self, make_settings):
        guard = FlakySetup()
        config = make_settings()
        registry = EndpointRegistry()

        with pytest.raises(RuntimeError, match="hook failed"):
            guard.ensure_initialized(config, registry)
        assert not guard.initialized
        assert guard.steps[-1] == "rollback"

        assert guard.ensure_initialized(config, registry) is True
        assert guard.initialized
        assert guard.steps.count("database") == 2
        assert [e.name for e in registry] == ["home", "health", "metrics"]

    def test_rollback_releases_engines(self, make_settings, monkeypatch):
        monkeypatch.setattr(database, "_engines", {})
        monkeypatch.setattr(database, "_session_factories", {})
        monkeypatch.setattr(queue, "client", None)
        config = make_settings(logs_database_url=make_settings().database_url)

        database.connect(config)
        database.connect_logs(config)
        queue.client = object()
        AppSetup().rollback()

        assert database.engines() == {}
        assert queue.client is None
        with pytest.raises(DatabaseError):
            database.get_engine()


class TestSetup:
    def test_options_configure_registry(self, make_settings):
        registry = EndpointRegistry()
        setup(make_settings(), registry, guard=RecordingSetup(), beta_features=True)
        assert registry.options == {"beta_features": True}

    def test_options_applied_after_initialization(self, make_settings):
        registry = EndpointRegistry()
        guard = RecordingSetup()
        setup(make_settings(), registry, guard=guard)
        setup(make_settings(), registry, guard=guard, ssl=True)

        assert registry.options == {"ssl": True}
        assert guard.steps.count("core") == 1

    def test_touches_sentinel_on_platform(self, make_settings, monkeypatch, tmp_path):
        sentinel = tmp_path / "app-initialized"
        monkeypatch.setenv("DYNO", "web.1")

        setup(make_settings(ready_sentinel_path=str(sentinel)), EndpointRegistry(), guard=RecordingSetup())
        assert sentinel.exists()

    def test_no_sentinel_off_platform(self, make_settings, monkeypatch, tmp_path):
        sentinel = tmp_path / "app-initialized"
        monkeypatch.delenv("DYNO", raising=False)

        assert signal_ready(make_settings(ready_sentinel_path=str(sentinel))) is False
        assert not sentinel.exists()


class TestDeploySha:
    def test_reads_first_eight_characters(self, make_settings, tmp_path):
        path = tmp_path / ".deploy-sha"
        path.write_text("8f3c1d2e9a7b6c5d4e3f2a1b\n")
        assert deploy_sha(make_settings(deploy_sha_path=str(path))) == "8f3c1d2e"

    def test_default_without_file(self, make_settings, tmp_path):
        config = make_settings(deploy_sha_path=str(tmp_path / "missing"))
        assert deploy_sha(config) == DEFAULT_DEPLOY_SHA
