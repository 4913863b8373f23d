"""
Tests de los scripts de desarrollo.
"""
from scripts import run_dev


class TestRunDev:
    def test_runs_app_with_reload_on_configured_address(self, monkeypatch):
        calls = []
        monkeypatch.setattr(run_dev.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

        run_dev.main()

        app, kwargs = calls[0]
        assert app == "main:app"
        assert kwargs["host"] == run_dev.settings.HOST
        assert kwargs["port"] == run_dev.settings.PORT
        assert kwargs["reload"] is True
        assert kwargs["reload_dirs"] == ["pos_sync"]
