"""Resolve the deployment topology once per device instance."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from plugsession.config import Settings
from plugsession.device.interfaces import HostInfo
from plugsession.shared.models import RuntimeContext

logger = logging.getLogger(__name__)

_ISOLATED_ENV_VARS = ("PLUGSESSION_ISOLATED", "HOMEBRIDGE_CHILD")
_ISOLATED_NAME_HINTS = ("child",)


def _detect_isolation(host: HostInfo | None, environ: Mapping[str, str]) -> tuple[bool, str]:
    if host is not None:
        flag = getattr(host, "is_isolated_instance", None)
        if isinstance(flag, bool):
            return flag, "host"
        host_name = getattr(host, "name", None)
        if isinstance(host_name, str) and any(hint in host_name.lower() for hint in _ISOLATED_NAME_HINTS):
            return True, "host-name"
    for var in _ISOLATED_ENV_VARS:
        if environ.get(var, "").strip() == "1":
            return True, "environment"
    return False, "default"


def resolve_runtime_context(
    settings: Settings,
    host: HostInfo | None = None,
    environ: Mapping[str, str] | None = None,
) -> RuntimeContext:
    """Build the immutable runtime snapshot consulted by the escalation policy.

    Resolution order for ``isolated_instance``:

    1. explicit ``settings.isolated_instance``
    2. ``host.is_isolated_instance`` when it is a bool
    3. ``host.name`` mentioning "child" (a plain "Homebridge" host is shared)
    4. ``PLUGSESSION_ISOLATED=1`` / ``HOMEBRIDGE_CHILD=1`` in the environment
    5. False
    """
    if settings.isolated_instance is not None:
        isolated, source = settings.isolated_instance, "config"
    else:
        try:
            isolated, source = _detect_isolation(host, os.environ if environ is None else environ)
        except Exception as exc:
            logger.warning("%s: topology detection failed, assuming shared host: %s", settings.name, exc)
            isolated, source = False, "default"

    runtime = RuntimeContext(
        isolated_instance=isolated,
        isolation_source=source,
        force_restart_on_failure=settings.force_restart_on_failure,
        grace_delay_s=settings.restart_grace_ms / 1000,
    )
    logger.debug(
        "%s: runtime isolated_instance=%s (from %s) force_restart_on_failure=%s",
        settings.name,
        runtime.isolated_instance,
        runtime.isolation_source,
        runtime.force_restart_on_failure,
    )
    return runtime
