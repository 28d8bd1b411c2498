from sweepmeter import main
from sweepmeter.constants import ExitCode


def test_no_command_prints_help(capsys):
    assert main.main([]) == ExitCode.USAGE
    assert "usage: sweepmeter" in capsys.readouterr().out


def test_generate_then_analyze(tmp_path, capsys):
    sweep_path = tmp_path / "sweep.wav"
    plot_path = tmp_path / "sweep.png"
    assert main.main(["generate", str(sweep_path), "--fs", "8000"]) == ExitCode.OK
    assert sweep_path.exists()

    assert main.main(["analyze", str(sweep_path), "--width", "200", "--plot", str(plot_path)]) == ExitCode.OK
    out = capsys.readouterr().out
    assert "200 points" in out
    assert "Max Value (dB): 20.3 Hz" in out
    assert plot_path.stat().st_size > 0


def test_analyze_missing_file(tmp_path, capsys):
    assert main.main(["analyze", str(tmp_path / "missing.wav")]) == ExitCode.MEASUREMENT_FAILED
    assert "Error processing audio" in capsys.readouterr().out
