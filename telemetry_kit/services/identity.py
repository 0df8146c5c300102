import hashlib
import os
import platform
import uuid
from pathlib import Path
from typing import Optional

from loguru import logger

from telemetry_kit.core.errors import MachineIdError
from telemetry_kit.schemas.events import Environment


USER_ID_SALT = "telemetry-kit-v1"

MACHINE_ID_FILES = (
    Path("/etc/machine-id"),
    Path("/var/lib/dbus/machine-id"),
)

CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "JENKINS_HOME", "TRAVIS", "CIRCLECI")


def get_machine_id() -> str:
    for path in MACHINE_ID_FILES:
        try:
            machine_id = path.read_text().strip()
        except OSError:
            continue
        if machine_id:
            return machine_id

    node = uuid.getnode()
    # getnode() sets the multicast bit when it had to invent a random address
    if node >> 40 & 1:
        raise MachineIdError("Failed to get machine ID: no stable hardware identifier")
    return f"{node:012x}"


def generate_user_id() -> str:
    """
    Anonymous user id, stable across runs on one machine.

    The machine id is salted and hashed so it cannot be recovered from the result.
    """
    digest = hashlib.sha256((get_machine_id() + USER_ID_SALT).encode("utf-8")).hexdigest()
    return f"client_{digest}"


def generate_random_user_id() -> str:
    digest = hashlib.sha256(uuid.uuid4().bytes).hexdigest()
    return f"client_{digest}"


def generate_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


def is_ci() -> bool:
    return any(var in os.environ for var in CI_ENV_VARS)


def detect_shell() -> Optional[str]:
    shell = os.environ.get("SHELL")
    if not shell:
        return None
    return Path(shell).name or None


def detect_environment() -> Environment:
    environment = Environment(
        os=platform.system().lower() or "unknown",
        os_version=platform.release() or None,
        arch=platform.machine() or None,
        ci=is_ci(),
        shell=detect_shell(),
    )
    logger.debug(f"Detected environment: {environment.os}/{environment.arch}, ci={environment.ci}")
    return environment
