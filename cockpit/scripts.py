"""
Remote shell scripts run inside a sprite via `sprite exec /bin/sh -c`.

Every interpolated value goes through `quote`. Templates use str.format
placeholders, so literal shell braces are written doubled (`${{HOME}}`).
"""

from __future__ import annotations

import posixpath
import shlex

from cockpit.errors import ScriptValueError

NPM_BIN_PATH = 'export PATH="$(npm prefix -g)/bin:$PATH"'

# Printed to stderr by the clone script when the requested branch is missing
BRANCH_FALLBACK_MARKER = "COCKPIT_BRANCH_FALLBACK"

QA_TURN_PROMPT = (
    "Use the write tool to create a file named answer.txt in the current "
    "directory with exactly the text 42 and a trailing newline."
)


def quote(value: str) -> str:
    if "\x00" in value:
        raise ScriptValueError("NUL byte in shell script value")
    return shlex.quote(value)


class ShellScript:
    def __init__(self, strict: bool = True):
        self._lines: list[str] = ["set -eu", ""] if strict else []

    def line(self, template: str, **values: str) -> ShellScript:
        self._lines.append(template.format(**{k: quote(v) for k, v in values.items()}))
        return self

    def raw(self, text: str) -> ShellScript:
        self._lines.append(text)
        return self

    def render(self) -> str:
        return "\n".join(self._lines) + "\n"


def home_probe_script() -> str:
    return 'printf "%s" "${HOME:-}"'


def bootstrap_script(min_node: int, package: str, binary: str) -> str:
    # `npm install -g` lands in $(npm prefix -g)/bin which is not on PATH by default
    s = ShellScript()
    for tool in ("node", "npm"):
        s.line("if ! command -v {tool} >/dev/null 2>&1; then", tool=tool)
        s.line('  echo "Missing "{tool}" in Sprite environment" >&2', tool=tool)
        s.raw("  exit 1")
        s.raw("fi")
    s.raw("node -v")
    s.raw("npm -v")
    s.raw("")
    s.raw(
        "if [ \"$(node -p 'Number(process.versions.node.split(\".\")[0])' 2>/dev/null || echo 0)\""
        f" -lt {int(min_node)} ]; then"
    )
    s.raw(f'  echo "Node too old; need >= {int(min_node)}" >&2')
    s.raw("  exit 1")
    s.raw("fi")
    s.raw("")
    s.raw("npm config set fund false >/dev/null 2>&1 || true")
    s.raw("npm config set audit false >/dev/null 2>&1 || true")
    s.line(
        "npm install -g {package} >/tmp/cockpit-npm-install.log 2>&1"
        " || (cat /tmp/cockpit-npm-install.log >&2; exit 1)",
        package=package,
    )
    s.raw("")
    s.raw(NPM_BIN_PATH)
    s.line("{binary} --version", binary=binary)
    return s.render()


def clone_script(repo_url: str, branch: str, workdir: str, ssh_key: str | None = None) -> str:
    s = ShellScript()
    if ssh_key:
        s.line(
            'export GIT_SSH_COMMAND="ssh -i "{key}" -o IdentitiesOnly=yes'
            ' -o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"',
            key=ssh_key,
        )
    else:
        s.raw("if command -v ssh >/dev/null 2>&1; then")
        s.raw('  export GIT_SSH_COMMAND="ssh -o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"')
        s.raw("fi")
    s.raw("")
    s.line("rm -rf {dir}", dir=workdir)
    s.line("mkdir -p {parent}", parent=posixpath.dirname(workdir) or "/")
    s.raw("")
    s.line("echo Cloning {repo}...", repo=repo_url)
    s.line(
        "if git clone --depth 1 --branch {branch} {repo} {dir} >/tmp/cockpit-git-clone.log 2>&1; then",
        branch=branch,
        repo=repo_url,
        dir=workdir,
    )
    s.line("  echo Checked out branch {branch}.", branch=branch)
    s.raw("else")
    s.line(
        '  echo "{marker}: clone --branch "{branch}" failed; cloning default branch instead." >&2',
        marker=BRANCH_FALLBACK_MARKER,
        branch=branch,
    )
    s.raw("  cat /tmp/cockpit-git-clone.log >&2 || true")
    s.line("  rm -rf {dir}", dir=workdir)
    s.line("  git clone --depth 1 {repo} {dir}", repo=repo_url, dir=workdir)
    s.raw("fi")
    return s.render()


def ssh_install_script(remote_tmp_dir: str, key_name: str) -> str:
    s = ShellScript()
    s.raw('SSH_DIR="${HOME:-/home/sprite}/.ssh"')
    s.raw('mkdir -p "$SSH_DIR"')
    s.raw('chmod 700 "$SSH_DIR"')
    for suffix in ("", ".pub"):
        s.line(
            'mv {src} "$SSH_DIR"/{name}',
            src=posixpath.join(remote_tmp_dir, key_name + suffix),
            name=key_name + suffix,
        )
    s.line('chmod 600 "$SSH_DIR"/{name}', name=key_name)
    s.line('chmod 644 "$SSH_DIR"/{name}', name=key_name + ".pub")
    return s.render()


def extract_script(remote_tarball: str) -> str:
    return (
        ShellScript(strict=False)
        .line('tar -xzf {tar} -C "${{HOME:-/home/sprite}}" && rm -f {tar}', tar=remote_tarball)
        .render()
    )


def sanity_script(workdir: str, binary: str) -> str:
    return (
        ShellScript()
        .line("cd {dir}", dir=workdir)
        .raw(NPM_BIN_PATH)
        .line("command -v {binary}", binary=binary)
        .line("{binary} --version", binary=binary)
        .raw("test -d .git")
        .render()
    )


def qa_help_script(workdir: str, binary: str) -> str:
    return (
        ShellScript()
        .line("cd {dir}", dir=workdir)
        .raw(NPM_BIN_PATH)
        .line("{binary} --help >/dev/null", binary=binary)
        .render()
    )


def qa_turn_script(workdir: str, binary: str) -> str:
    s = ShellScript()
    s.line("cd {dir}", dir=workdir)
    s.raw(NPM_BIN_PATH)
    s.raw("rm -f answer.txt")
    s.line("{binary} --print --no-session {prompt} || true", binary=binary, prompt=QA_TURN_PROMPT)
    s.raw("if [ ! -f answer.txt ]; then")
    s.raw('  echo "QA TURN FAIL: answer.txt missing" >&2')
    s.raw("  exit 1")
    s.raw("fi")
    s.raw("if [ \"$(tr -d '\\n' < answer.txt)\" != \"42\" ]; then")
    s.raw('  echo "QA TURN FAIL: answer.txt content was:" >&2')
    s.raw("  cat answer.txt >&2 || true")
    s.raw("  exit 1")
    s.raw("fi")
    s.raw('echo "QA TURN OK"')
    return s.render()


def shell_script() -> str:
    return f"{NPM_BIN_PATH}; if command -v bash >/dev/null 2>&1; then exec bash -l; fi; exec sh"
