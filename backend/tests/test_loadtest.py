"""
test_loadtest.py - Tests for the load validation entry point.
"""

from trajectory_fhe.loadtest import main, random_trajectories, run_load


def test_random_trajectories_shape_and_ranges():
    rows = random_trajectories(50, seed=7)
    assert rows.shape == (50, 5)
    assert rows[:, 3].min() >= 1
    assert rows[:, 4].max() <= 120


def test_run_load_grows_quadratically():
    result = run_load(12, seed=1)
    assert result.ledger_size == result.expected_size == 66
    assert result.per_mission_ok
    assert result.ok
    assert result.latencies_s.shape == (12,)


def test_main_exit_codes(capsys):
    assert main(["--missions", "5", "--seed", "3"]) == 0
    assert "PASS" in capsys.readouterr().out
    assert main(["--missions", "0"]) == 1
