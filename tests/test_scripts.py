import os
import shlex
import shutil
import stat
import subprocess

import pytest

from cockpit.errors import ScriptValueError
from cockpit.scripts import (
    BRANCH_FALLBACK_MARKER,
    ShellScript,
    bootstrap_script,
    clone_script,
    extract_script,
    qa_turn_script,
    quote,
    ssh_install_script,
)

HOSTILE = "it's $(rm -rf /) `x` \"y\" ; z"


def test_quote_rejects_nul():
    with pytest.raises(ScriptValueError):
        quote("a\x00b")


def test_quote_round_trips_through_shell_lexer():
    assert shlex.split(quote(HOSTILE)) == [HOSTILE]


def test_shell_script_strict_preamble_and_literal_braces():
    text = ShellScript().line('echo "${{HOME}}" {v}', v="x y").render()
    assert text.startswith("set -eu\n")
    assert "echo \"${HOME}\" 'x y'" in text


def test_bootstrap_script_pins_node_major_and_package():
    text = bootstrap_script(20, "@scope/pkg", "pi")
    assert "-lt 20 ]" in text
    assert "npm install -g @scope/pkg" in text
    assert text.rstrip().endswith("pi --version")


def test_clone_script_quotes_hostile_branch():
    text = clone_script("https://example.com/r.git", HOSTILE, "/home/sprite/workspace")
    assert quote(HOSTILE) in text
    assert "$(rm -rf /)" not in text.replace(quote(HOSTILE), "")


def test_clone_script_with_ssh_key_sets_identity():
    text = clone_script("git@github.com:o/r.git", "main", "/w", ssh_key="~/.ssh/cockpit_ed25519")
    assert "IdentitiesOnly=yes" in text
    assert "GIT_SSH_COMMAND" in text


def test_ssh_install_script_moves_both_halves():
    text = ssh_install_script("/tmp", "cockpit_ed25519")
    assert 'mv /tmp/cockpit_ed25519 "$SSH_DIR"/cockpit_ed25519' in text
    assert 'mv /tmp/cockpit_ed25519.pub "$SSH_DIR"/cockpit_ed25519.pub' in text
    assert 'chmod 600 "$SSH_DIR"/cockpit_ed25519' in text


def test_extract_script_keeps_home_expansion():
    text = extract_script("/tmp/host-pi.tar.gz")
    assert '"${HOME:-/home/sprite}"' in text
    assert "rm -f /tmp/host-pi.tar.gz" in text


def test_qa_turn_script_quotes_prompt():
    text = qa_turn_script("/home/sprite/workspace", "pi")
    assert "--print --no-session '" in text
    assert "QA TURN OK" in text


# ==================== Clone fallback against a real shell ====================

FAKE_GIT = """#!/bin/sh
# Fails `clone --branch`; a plain clone creates the destination directory.
for last; do :; done
case " $* " in
  *" --branch "*) echo "fatal: Remote branch not found" >&2; exit 128 ;;
esac
mkdir -p "$last/.git"
"""

FAKE_GIT_OK = """#!/bin/sh
for last; do :; done
mkdir -p "$last/.git"
"""


def _run_clone(tmp_path, git_body, branch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    git = bin_dir / "git"
    git.write_text(git_body)
    git.chmod(git.stat().st_mode | stat.S_IXUSR)
    workdir = tmp_path / "home" / "workspace"
    env = {**os.environ, "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}"}
    return subprocess.run(
        ["/bin/sh", "-c", clone_script("https://example.com/r.git", branch, str(workdir))],
        env=env,
        capture_output=True,
        text=True,
    ), workdir


@pytest.mark.skipif(shutil.which("sh") is None, reason="requires /bin/sh")
def test_clone_script_falls_back_to_default_branch(tmp_path):
    proc, workdir = _run_clone(tmp_path, FAKE_GIT, "no-such-branch")
    assert proc.returncode == 0
    assert BRANCH_FALLBACK_MARKER in proc.stderr
    assert (workdir / ".git").is_dir()


@pytest.mark.skipif(shutil.which("sh") is None, reason="requires /bin/sh")
def test_clone_script_requested_branch_has_no_marker(tmp_path):
    proc, workdir = _run_clone(tmp_path, FAKE_GIT_OK, "main")
    assert proc.returncode == 0
    assert BRANCH_FALLBACK_MARKER not in proc.stderr
    assert "Checked out branch main." in proc.stdout
    assert (workdir / ".git").is_dir()
