import asyncio
import signal
import sys

import pytest

from cockpit.errors import CommandError
from cockpit.runner import ProcessRunner, RunResult, child_env, format_command

PY = sys.executable


def test_format_command_quotes_whitespace_args():
    assert format_command("sprite", ["exec", "/bin/sh", "-c", "echo hi"]) == 'sprite exec /bin/sh -c "echo hi"'


def test_child_env_overrides():
    env = child_env(COPYFILE_DISABLE="1")
    assert env["COPYFILE_DISABLE"] == "1"
    assert "PATH" in env


@pytest.mark.asyncio
async def test_run_captures_stdout_and_stderr():
    runner = ProcessRunner()
    result = await runner.run(
        PY, ["-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"], stdio="pipe"
    )
    assert result.code == 3
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert not result.ok


@pytest.mark.asyncio
async def test_run_passes_input_text():
    runner = ProcessRunner()
    result = await runner.run(PY, ["-c", "import sys; print(sys.stdin.read().upper())"], stdio="pipe", input_text="abc")
    assert result.stdout.strip() == "ABC"


@pytest.mark.asyncio
async def test_dry_run_skips_spawn():
    runner = ProcessRunner(dry_run=True)
    result = await runner.run("definitely-not-a-real-binary", ["x"])
    assert result == RunResult(0)


@pytest.mark.asyncio
async def test_dry_run_override_forces_real_run():
    runner = ProcessRunner(dry_run=True)
    result = await runner.run(PY, ["-c", "print('real')"], stdio="pipe", dry_run=False)
    assert result.stdout.strip() == "real"


@pytest.mark.asyncio
async def test_require_ok_raises_with_output():
    runner = ProcessRunner()
    with pytest.raises(CommandError) as info:
        await runner.require_ok(PY, ["-c", "import sys; print('boom'); sys.exit(2)"], stdio="pipe")
    assert info.value.code == 2
    assert "boom" in info.value.output
    assert str(info.value).startswith("Command failed (2):")


@pytest.mark.asyncio
async def test_require_ok_allow_failure_returns_result():
    runner = ProcessRunner()
    result = await runner.require_ok(PY, ["-c", "raise SystemExit(4)"], stdio="pipe", allow_failure=True)
    assert result.code == 4


@pytest.mark.asyncio
async def test_missing_binary_raises_oserror():
    runner = ProcessRunner()
    with pytest.raises(OSError):
        await runner.run("cockpit-no-such-binary-xyz", stdio="pipe")


@pytest.mark.asyncio
async def test_cancel_terminates_child():
    runner = ProcessRunner()
    task = asyncio.create_task(runner.run(PY, ["-c", "import time; time.sleep(30)"], stdio="ignore"))
    await asyncio.sleep(0.5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, 10)


@pytest.mark.asyncio
async def test_forward_signal_reaches_inherited_child():
    runner = ProcessRunner()
    task = asyncio.create_task(runner.run(PY, ["-c", "import time; time.sleep(30)"], stdio="inherit"))
    for _ in range(100):
        if runner._attached:
            break
        await asyncio.sleep(0.05)
    assert len(runner._attached) == 1

    runner.forward_signal(signal.SIGTERM)
    result = await asyncio.wait_for(task, 10)
    assert result.code == -signal.SIGTERM
    assert not runner._attached
