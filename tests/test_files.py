import json

import pytest

from interpreter import RSLRuntimeError


def quoted(path):
    return json.dumps(path.as_posix())


def test_write_then_read_file(tmp_path, run):
    target = tmp_path / "note.txt"
    _interp, value = run(f'writeFile({quoted(target)}, "line one\\n")\nreadFile({quoted(target)})')
    assert value.value == "line one\n"
    assert target.read_text(encoding="utf-8") == "line one\n"


def test_read_missing_file_is_io_error(tmp_path, run):
    with pytest.raises(RSLRuntimeError) as info:
        run(f"readFile({quoted(tmp_path / 'absent.txt')})")
    assert info.value.kind == "io"


def test_run_shell_command_returns_stdout(run):
    interp, value = run('runShellCommand("echo hi")')
    assert value.value.strip() == "hi"
    assert interp.io_log[-1]["event"] == "shell"
    assert interp.io_log[-1]["code"] == 0


def test_run_shell_command_failure(run):
    with pytest.raises(RSLRuntimeError) as info:
        run('runShellCommand("exit 3")')
    assert "status 3" in info.value.message
