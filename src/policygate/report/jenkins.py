"""Jenkins build properties."""

import os
from pathlib import Path
from typing import Mapping

from policygate.engine import GateResult

PROPERTIES_FILE = "gate.properties"


def write_jenkins_properties(
    result: GateResult,
    report_file: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    workdir: str | Path | None = None,
) -> Path | None:
    """
    Write gate.properties for Jenkins when JENKINS_URL is set.

    The file is replaced on every run and holds GATE_STATUS and GATE_REPORT,
    ready for an `env` injection or archive step.

    Returns:
        Path of the properties file, or None outside Jenkins
    """
    env = os.environ if env is None else env
    if not env.get("JENKINS_URL"):
        return None

    path = Path(workdir or Path.cwd()) / PROPERTIES_FILE
    path.write_text(
        f"GATE_STATUS={result.status.value}\nGATE_REPORT={report_file or ''}\n",
        encoding="utf-8",
    )
    return path
