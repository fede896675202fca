def test_paths_respect_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("SECGATE_LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SECGATE_PIPELINES_DIR", str(tmp_path / "pipelines"))
    monkeypatch.setenv("SECGATE_OUT_DIR", str(tmp_path / "out"))
    monkeypatch.setenv("SECGATE_ARTIFACTS_DIR", str(tmp_path / "artifacts"))

    from env import paths

    assert paths.LOGS_DIR == (tmp_path / "logs").resolve()
    assert paths.PIPELINES_DIR.exists()
    assert paths.OUT_DIR.exists()
    assert paths.ARTIFACTS_DIR.exists()


def test_run_report_file(tmp_path, monkeypatch):
    monkeypatch.setenv("SECGATE_OUT_DIR", str(tmp_path / "out"))

    from env import paths

    report = paths.run_report_file("2026-01-01_00-00-00")

    assert report.parent.exists()
    assert report.parent.name == "runs"
    assert report.name == "2026-01-01_00-00-00.json"


def test_log_path_helpers(tmp_path, monkeypatch):
    monkeypatch.setenv("SECGATE_LOGS_DIR", str(tmp_path))

    from logger.log_paths import command_logs_dir, pipeline_logs_dir

    cmd = command_logs_dir("pipelines")
    pipe = pipeline_logs_dir("run", "devsecops")

    assert cmd.exists()
    assert pipe.exists()
    assert pipe.parent.name == "run"
