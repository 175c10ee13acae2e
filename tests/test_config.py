import textwrap
from pathlib import Path

import pytest

from clustertask.callbacks import LoggerCallback
from clustertask.config import (
    ClusterSettings,
    discover_clusterfile,
    import_target,
    load_settings,
    settings_from_mapping,
)
from clustertask.errors import (
    ClusterfileEnvironmentNotFoundError,
    ClusterfileInvalidError,
    ClusterfileNotFoundError,
    ConfigurationError,
)


def _write_sample_clusterfile(tmp_path: Path) -> Path:
    content = textwrap.dedent(
        """
        [default.cluster]
        scheduler = "slurm"
        default_memory = 8000
        status_poll_interval = 2

        [default.cluster.slurm]
        account = "genomics"
        partition = "normal"

        [bigmem.cluster]
        default_memory = 64000

        [bigmem.cluster.slurm]
        partition = "bigmem"

        [condor.cluster]
        scheduler = "htcondor"
        wrapper_script = "scripts/condor.sh"

        [condor.cluster.htcondor]
        concurrency_limits = "db:2"

        [remote.cluster.ssh]
        hostname = "submit.example.com"
        username = "alice"
        """
    )
    clusterfile = tmp_path / "Clusterfile.toml"
    clusterfile.write_text(content, encoding="utf-8")
    return clusterfile


def test_load_default_environment(tmp_path):
    clusterfile = _write_sample_clusterfile(tmp_path)

    settings = load_settings(clusterfile)

    assert settings.scheduler == "slurm"
    assert settings.default_memory == 8000
    assert settings.status_poll_interval == 2.0
    assert settings.scheduler_options == {"account": "genomics", "partition": "normal"}
    assert settings.env_name == "default"
    assert settings.source == clusterfile
    assert not settings.uses_ssh


def test_environment_overrides_default(tmp_path):
    clusterfile = _write_sample_clusterfile(tmp_path)

    settings = load_settings(clusterfile, env="bigmem")

    assert settings.scheduler == "slurm"
    assert settings.default_memory == 64000
    assert settings.scheduler_options == {"account": "genomics", "partition": "bigmem"}


def test_relative_wrapper_script_resolves_against_clusterfile(tmp_path):
    clusterfile = _write_sample_clusterfile(tmp_path)

    settings = load_settings(clusterfile, env="condor")

    assert settings.scheduler == "htcondor"
    assert settings.wrapper_script == tmp_path / "scripts" / "condor.sh"
    assert ("HTCondor concurrency limits", "db:2") in settings.info()


def test_ssh_section(tmp_path):
    clusterfile = _write_sample_clusterfile(tmp_path)

    settings = load_settings(clusterfile, env="remote")

    assert settings.uses_ssh
    assert settings.ssh["username"] == "alice"
    assert ("Submit host", "submit.example.com") in settings.info()


def test_environment_from_env_var(tmp_path, monkeypatch):
    clusterfile = _write_sample_clusterfile(tmp_path)
    monkeypatch.setenv("CLUSTER_ENV", "bigmem")

    assert load_settings(clusterfile).default_memory == 64000


def test_overrides(tmp_path):
    clusterfile = _write_sample_clusterfile(tmp_path)

    settings = load_settings(clusterfile, overrides={"scheduler": "pbspro"})

    assert settings.scheduler == "pbspro"
    assert settings.scheduler_options == {}


def test_unknown_environment(tmp_path):
    clusterfile = _write_sample_clusterfile(tmp_path)

    with pytest.raises(ClusterfileEnvironmentNotFoundError, match="producton"):
        load_settings(clusterfile, env="producton")


def test_discovery_walks_up(tmp_path, monkeypatch):
    clusterfile = _write_sample_clusterfile(tmp_path)
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert discover_clusterfile(nested) == clusterfile

    monkeypatch.chdir(nested)
    assert load_settings().source == clusterfile


def test_clusterfile_env_var(tmp_path, monkeypatch):
    clusterfile = _write_sample_clusterfile(tmp_path)
    monkeypatch.setenv("CLUSTERFILE", str(tmp_path))

    assert load_settings(start_dir="/").source == clusterfile


def test_missing_clusterfile(tmp_path):
    with pytest.raises(ClusterfileNotFoundError):
        load_settings(tmp_path / "nope.toml")


def test_invalid_toml(tmp_path):
    clusterfile = tmp_path / "Clusterfile"
    clusterfile.write_text("[default.cluster\nscheduler = ", encoding="utf-8")

    with pytest.raises(ClusterfileInvalidError, match="Invalid TOML"):
        load_settings(clusterfile)


def test_tool_section_in_pyproject(tmp_path):
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(
        textwrap.dedent(
            """
            [tool.clustertask.default.cluster]
            scheduler = "torque"

            [tool.clustertask.default.cluster.torque]
            queue = "batch"
            """
        ),
        encoding="utf-8",
    )

    settings = load_settings(pyproject)

    assert settings.scheduler == "torque"
    assert settings.scheduler_options == {"queue": "batch"}


def test_callbacks_are_instantiated(tmp_path):
    clusterfile = tmp_path / "Clusterfile"
    clusterfile.write_text(
        textwrap.dedent(
            """
            [default]
            callbacks = ["clustertask.callbacks:LoggerCallback"]

            [default.cluster]
            scheduler = "dummy"
            """
        ),
        encoding="utf-8",
    )

    settings = load_settings(clusterfile)

    assert len(settings.callbacks) == 1
    assert isinstance(settings.callbacks[0], LoggerCallback)


def test_callback_must_be_a_base_callback(tmp_path):
    clusterfile = tmp_path / "Clusterfile"
    clusterfile.write_text(
        textwrap.dedent(
            """
            [default]
            callbacks = [{ target = "collections:OrderedDict" }]

            [default.cluster]
            scheduler = "dummy"
            """
        ),
        encoding="utf-8",
    )

    with pytest.raises(ClusterfileInvalidError, match="BaseCallback"):
        load_settings(clusterfile)


class TestSettingsFromMapping:
    def test_defaults(self):
        settings = settings_from_mapping({})
        assert settings.scheduler == "dummy"
        assert settings.default_memory == -1
        assert settings.wrapper_script is None

    def test_scheduler_name_is_normalized(self):
        assert settings_from_mapping({"scheduler": " SLURM "}).scheduler == "slurm"

    def test_invalid_memory(self):
        with pytest.raises(ClusterfileInvalidError, match="default_memory"):
            settings_from_mapping({"default_memory": "lots"})

    def test_boolean_memory_is_rejected(self):
        with pytest.raises(ClusterfileInvalidError):
            settings_from_mapping({"default_memory": True})

    def test_scheduler_options_must_be_a_table(self):
        with pytest.raises(ClusterfileInvalidError, match=r"\[cluster.slurm\]"):
            settings_from_mapping({"scheduler": "slurm", "slurm": "normal"})

    def test_entry_point_string(self):
        settings = settings_from_mapping({"entry_point": "/opt/venv/bin/clustertask"})
        assert settings.entry_point == ("/opt/venv/bin/clustertask",)

    def test_log_level(self):
        assert settings_from_mapping({"log_level": "debug"}).log_level == "DEBUG"


class TestClusterSettings:
    def test_attempts_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            ClusterSettings(max_status_attempts=0)

    def test_negative_intervals_are_rejected(self):
        with pytest.raises(ConfigurationError):
            ClusterSettings(status_retry_delay=-1)

    def test_info_rows(self):
        rows = dict(ClusterSettings(scheduler="slurm").info())
        assert rows["Cluster scheduler"] == "slurm"
        assert rows["Wrapper script"] == "bundled"
        assert rows["Default cluster memory required"] == "not set"
        assert rows["Submit host"] == "local"


class TestImportTarget:
    def test_colon_form(self):
        assert import_target("os.path:join") is __import__("os").path.join

    def test_dotted_form(self):
        assert import_target("os.path.join") is __import__("os").path.join

    def test_missing_module(self):
        with pytest.raises(ImportError, match="Cannot import"):
            import_target("no_such_module_xyz:func")

    def test_invalid_target(self):
        with pytest.raises(ValueError, match="Invalid target"):
            import_target("nodots", error_cls=ValueError)
