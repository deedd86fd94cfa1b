import subprocess
from pathlib import Path

import pytest

from lidar_contours.stage import ContourStageParams, run


def test_stage_invokes_cli(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    calls = {}

    def fake_run(cmd, **kwargs):
        calls["cmd"] = cmd
        calls["kwargs"] = kwargs
        return subprocess.CompletedProcess(cmd, 0, stdout="ok", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    params = ContourStageParams(
        las_path=Path("data/tile.laz"),
        out_path=tmp_path / "out" / "summary.json",
        algorithm="refine",
        smoothing_iterations=4,
        form_lines=True,
        emit_geojson=True,
        include_water=False,
        elevation_only=True,
        timeout_s=30.0,
    )
    out = run(params)

    assert out == params.out_path
    assert params.out_path.parent.is_dir()
    assert calls["kwargs"]["check"] is True
    assert calls["kwargs"]["capture_output"] is True
    assert calls["kwargs"]["text"] is True
    assert calls["kwargs"]["timeout"] == 30.0
    cmd = calls["cmd"]
    assert "scripts/run_contours.py" in Path(cmd[1]).as_posix()
    assert cmd[cmd.index("--las") + 1] == "data/tile.laz"
    assert cmd[cmd.index("--algorithm") + 1] == "refine"
    assert cmd[cmd.index("--smoothing-iterations") + 1] == "4"
    assert "--form-lines" in cmd
    assert "--emit-geojson" in cmd
    assert "--ground-only" in cmd
    assert "--elevation-only" in cmd
    assert cmd[cmd.index("--lambda") + 1] == "1.0"
    assert "--tile-size" not in cmd
    assert "--verbose" not in cmd


def test_stage_surfaces_stderr(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def fake_run(_cmd, **_kwargs):
        raise subprocess.CalledProcessError(returncode=2, cmd=["python"], output="", stderr="boom")

    monkeypatch.setattr(subprocess, "run", fake_run)

    params = ContourStageParams(las_path=Path("tile.las"), out_path=tmp_path / "summary.json")
    with pytest.raises(RuntimeError, match="stderr: boom"):
        run(params)


def test_stage_timeout(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)

    params = ContourStageParams(las_path=Path("tile.las"), out_path=tmp_path / "summary.json", timeout_s=1.0)
    with pytest.raises(TimeoutError, match="timed out after 1.0s"):
        run(params)
