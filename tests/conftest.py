import pytest

from interpreter import Interpreter


@pytest.fixture
def outputs():
    return []


@pytest.fixture
def make_interpreter(outputs, tmp_path):
    def factory(**kwargs):
        kwargs.setdefault("output_sink", outputs.append)
        kwargs.setdefault("working_dir", str(tmp_path))
        return Interpreter(**kwargs)

    return factory


@pytest.fixture
def run(make_interpreter):
    """Run source in a fresh interpreter and return (interpreter, final value)."""

    def runner(source, **kwargs):
        interpreter = make_interpreter(**kwargs)
        value = interpreter.run_source(source)
        return interpreter, value

    return runner
