"""Provisioning stage machine.

Fail-loud policy:
- Invalid stage strings raise immediately.
- Illegal transitions raise immediately.
"""

from __future__ import annotations

from enum import StrEnum


class ProvisionStage(StrEnum):
    NEW = "new"
    AUTH_CHECK = "auth_check"
    CREATE = "create"
    SSH_KEY_UPLOAD = "ssh_key_upload"
    BOOTSTRAP = "bootstrap"
    CLONE = "clone"
    CONFIG_SYNC = "config_sync"
    SANITY_CHECK = "sanity_check"
    READY = "ready"
    QA_EXIT = "qa_exit"
    QA_TURN_EXIT = "qa_turn_exit"
    ATTACH = "attach"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    CLEANED = "cleaned"


# Happy path; SSH_KEY_UPLOAD is skipped for non-SSH repository URLs
_FORWARD: set[tuple[ProvisionStage, ProvisionStage]] = {
    (ProvisionStage.NEW, ProvisionStage.AUTH_CHECK),
    (ProvisionStage.AUTH_CHECK, ProvisionStage.CREATE),
    (ProvisionStage.CREATE, ProvisionStage.SSH_KEY_UPLOAD),
    (ProvisionStage.CREATE, ProvisionStage.BOOTSTRAP),
    (ProvisionStage.SSH_KEY_UPLOAD, ProvisionStage.BOOTSTRAP),
    (ProvisionStage.BOOTSTRAP, ProvisionStage.CLONE),
    (ProvisionStage.CLONE, ProvisionStage.CONFIG_SYNC),
    (ProvisionStage.CONFIG_SYNC, ProvisionStage.SANITY_CHECK),
    (ProvisionStage.SANITY_CHECK, ProvisionStage.READY),
    (ProvisionStage.READY, ProvisionStage.QA_EXIT),
    (ProvisionStage.READY, ProvisionStage.QA_TURN_EXIT),
    (ProvisionStage.READY, ProvisionStage.ATTACH),
}

TERMINAL_STAGES = frozenset(
    {
        ProvisionStage.FAILED,
        ProvisionStage.INTERRUPTED,
        ProvisionStage.CLEANED,
    }
)


def assert_stage_transition(
    current: ProvisionStage,
    target: ProvisionStage,
    *,
    reason: str,
) -> None:
    if target == ProvisionStage.CLEANED:
        if current == ProvisionStage.CLEANED:
            raise RuntimeError(f"Illegal provision transition: {current} -> {target} ({reason})")
        return
    if target in (ProvisionStage.FAILED, ProvisionStage.INTERRUPTED):
        if current in TERMINAL_STAGES:
            raise RuntimeError(f"Illegal provision transition: {current} -> {target} ({reason})")
        return
    if (current, target) not in _FORWARD:
        raise RuntimeError(f"Illegal provision transition: {current} -> {target} ({reason})")
