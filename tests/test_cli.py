# tests/test_cli.py
import json

from scripts import run_sunflower
from topple_sim import SingleSource, SunflowerConfig, SunflowerSimulator


def test_run_and_resume(tmp_path, capsys):
    backup_dir = tmp_path / "results"
    code = run_sunflower.main(
        [
            "--dimension", "2",
            "--value", "300",
            "--steps", "6",
            "--backup-every", "4",
            "--backup-dir", str(backup_dir),
        ]
    )
    assert code == 0
    run_dir = backup_dir / "Sunflower" / "2D" / "300" / "0"
    assert (run_dir / "step_4.npz").exists()
    final = run_dir / "step_6.npz"
    assert final.exists()
    assert "Backup saved" in capsys.readouterr().out

    code = run_sunflower.main(
        ["--restore", str(final), "--steps", "2", "--backup-dir", str(backup_dir)]
    )
    assert code == 0
    resumed = SunflowerSimulator.restore(run_dir / "step_8.npz")

    reference = SunflowerSimulator(SunflowerConfig(initial=SingleSource(300)))
    reference.run(8)
    assert resumed.domain == reference.domain


def test_parameter_file(tmp_path):
    params = tmp_path / "params.json"
    params.write_text(
        json.dumps(
            {
                "dimension": 1,
                "random_side": 3,
                "min_value": -20,
                "max_value": 20,
                "seed": 2,
                "steps": 3,
                "big_int": True,
                "backup_dir": str(tmp_path / "out"),
            }
        )
    )
    assert run_sunflower.main(["--params", str(params)]) == 0
    path = tmp_path / "out" / "Sunflower" / "1D" / "random" / "3_-20_20_2" / "step_3.npz"
    restored = SunflowerSimulator.restore(path, value_type="bigint", dimension=1)
    assert restored.get_step() == 3


def test_parameter_file_can_stop_when_stable(tmp_path):
    params = tmp_path / "params.toml"
    params.write_text(
        "dimension = 1\n"
        "value = 10\n"
        "steps = 50\n"
        "until_stable = true\n"
        f"backup_dir = '{tmp_path / 'out'}'\n"
    )
    assert run_sunflower.main(["--params", str(params)]) == 0
    run_dir = tmp_path / "out" / "Sunflower" / "1D" / "10" / "0"
    assert [p.name for p in run_dir.iterdir()] == ["step_6.npz"]
    assert SunflowerSimulator.restore(run_dir / "step_6.npz").is_changed() is False
