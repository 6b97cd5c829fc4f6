import io
import signal

import pytest

from cockpit import cli
from cockpit.config import CockpitConfig
from cockpit.errors import BindingError, CockpitError, PipelineInterrupted, ProvisionError
from cockpit.pipeline import CancelToken, RunMode
from cockpit.runner import RunResult
from tests.fakes.sprite_cli import FakeRunner

REPO = "https://github.com/acme/widget.git"


def test_parser_defaults_to_create():
    args = cli.build_parser().parse_args([])
    assert args.command is None
    assert not args.dry_run


def test_parser_setup_ssh_force():
    args = cli.build_parser().parse_args(["--dry-run", "setup-ssh", "--force"])
    assert args.command == "setup-ssh"
    assert args.force and args.dry_run


def test_attach_outside_tmux_exits_1(monkeypatch):
    monkeypatch.delenv("TMUX", raising=False)
    assert cli.main(["attach"]) == 1


def test_destroy_outside_tmux_exits_1(monkeypatch):
    monkeypatch.delenv("TMUX", raising=False)
    assert cli.main(["destroy"]) == 1


@pytest.mark.parametrize(
    ("exc", "code"),
    [
        (PipelineInterrupted(signal.SIGINT), 130),
        (PipelineInterrupted(signal.SIGTERM), 143),
        (ProvisionError("bootstrap failed"), 1),
    ],
)
def test_main_maps_errors_to_exit_codes(monkeypatch, exc, code):
    monkeypatch.setenv("COCKPIT_REPO_URL", REPO)
    monkeypatch.delenv("TMUX", raising=False)

    async def fake_create(config, runner, token):
        raise exc

    monkeypatch.setattr(cli, "cmd_create", fake_create)
    assert cli.main([]) == code


def test_main_success_returns_0(monkeypatch):
    seen = {}

    async def fake_create(config, runner, token):
        seen["dry_run"] = runner.dry_run
        seen["qa"] = config.qa

    monkeypatch.setattr(cli, "cmd_create", fake_create)
    monkeypatch.delenv("COCKPIT_QA", raising=False)
    monkeypatch.setenv("COCKPIT_REPO_URL", REPO)
    monkeypatch.delenv("TMUX", raising=False)
    assert cli.main(["--dry-run", "--qa"]) == 0
    assert seen == {"dry_run": True, "qa": True}


@pytest.mark.asyncio
async def test_detect_repo_url_reads_origin():
    runner = FakeRunner().on(
        lambda call: call.cmd == "git" and call.args[:2] == ["remote", "get-url"],
        RunResult(0, "git@github.com:acme/widget.git\n"),
    )
    assert await cli.detect_repo_url(runner) == "git@github.com:acme/widget.git"


@pytest.mark.asyncio
async def test_detect_repo_url_outside_git():
    runner = FakeRunner().on(lambda call: call.cmd == "git", RunResult(128, "", "not a git repository"))
    assert await cli.detect_repo_url(runner) is None


@pytest.mark.asyncio
async def test_create_refuses_bound_window(monkeypatch, tmp_path):
    monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
    runner = FakeRunner(tmux_value="cockpit-old")
    with pytest.raises(BindingError, match='already has Sprite "cockpit-old"'):
        await cli.cmd_create(CockpitConfig(home=tmp_path, repo_url=REPO), runner, CancelToken())
    assert runner.sprite_calls("create") == []


@pytest.mark.asyncio
async def test_create_preflight_refuses_bound_window(monkeypatch, tmp_path):
    monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
    runner = FakeRunner(tmux_value="cockpit-old")
    with pytest.raises(BindingError, match='already has Sprite "cockpit-old"'):
        await cli.create_preflight(CockpitConfig(home=tmp_path, repo_url=REPO), runner)
    assert not any(c.cmd == "git" for c in runner.calls)


@pytest.mark.asyncio
async def test_create_preflight_prefers_configured_url(monkeypatch, tmp_path):
    monkeypatch.delenv("TMUX", raising=False)
    runner = FakeRunner()
    assert await cli.create_preflight(CockpitConfig(home=tmp_path, repo_url=REPO), runner) == REPO
    assert runner.calls == []


@pytest.mark.asyncio
async def test_detect_repo_url_without_git_binary():
    async def missing(call):
        raise FileNotFoundError("git")

    runner = FakeRunner().on(lambda call: call.cmd == "git", missing)
    assert await cli.detect_repo_url(runner) is None


@pytest.mark.asyncio
async def test_create_requires_repo_url(tmp_path):
    runner = FakeRunner()
    with pytest.raises(CockpitError, match="Missing repo URL"):
        await cli.cmd_create(CockpitConfig(home=tmp_path), runner, CancelToken())
    assert runner.calls == []


def _outside_repo(monkeypatch, tmp_path, stdin_text):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TMUX", raising=False)
    monkeypatch.delenv("COCKPIT_REPO_URL", raising=False)
    monkeypatch.setattr("sys.stdin", io.StringIO(stdin_text))


def test_create_with_closed_stdin_exits_1(monkeypatch, tmp_path):
    _outside_repo(monkeypatch, tmp_path, "")
    assert cli.main(["--dry-run", "create"]) == 1


def test_create_prompts_for_repo_url(monkeypatch, tmp_path):
    _outside_repo(monkeypatch, tmp_path, "https://example.com/r.git\n")
    seen = {}

    async def fake_create(config, runner, token):
        seen["repo_url"] = config.repo_url

    monkeypatch.setattr(cli, "cmd_create", fake_create)
    assert cli.main(["--dry-run"]) == 0
    assert seen == {"repo_url": "https://example.com/r.git"}


@pytest.mark.parametrize(
    ("flags", "mode"),
    [({}, "INTERACTIVE"), ({"qa": True}, "QA"), ({"qa_turn": True}, "QA_TURN"), ({"qa": True, "qa_turn": True}, "QA_TURN")],
)
def test_mode_from_flags(tmp_path, flags, mode):
    assert cli._mode(CockpitConfig(home=tmp_path, **flags)) == RunMode[mode]
