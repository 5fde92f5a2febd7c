"""Ansible playbook execution for host configuration."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from pipeline_manager.exceptions import AnsibleError
from pipeline_manager.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class PlaybookResult:
    """Outcome of an ansible-runner execution."""

    status: str
    rc: int
    stats: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.rc == 0


def parse_extra_vars(text: str | None) -> dict:
    """Parse extra variables given as JSON or space separated key=value pairs."""
    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        value = None
    if isinstance(value, dict):
        return value

    extravars = {}
    for pair in text.split():
        if "=" in pair:
            key, val = pair.split("=", 1)
            extravars[key] = val
    return extravars


class PlaybookRunner:
    """Runs playbooks from an ansible-runner private data directory."""

    def __init__(
        self,
        private_data_dir: str | Path = "ansible",
        inventory: str | Path = "ansible/inventory/hosts.yml",
    ):
        """Initialize the runner.

        Args:
            private_data_dir: ansible-runner private data directory holding playbooks/
            inventory: Path to the Ansible inventory file
        """
        self.private_data_dir = Path(private_data_dir)
        self.inventory = Path(inventory)

    @property
    def playbook_dir(self) -> Path:
        return self.private_data_dir / "playbooks"

    def available_playbooks(self) -> list[str]:
        return sorted(p.name for p in self.playbook_dir.glob("*.yml"))

    def run(
        self,
        playbook: str,
        check: bool = False,
        tags: str | None = None,
        skip_tags: str | None = None,
        limit: str | None = None,
        extravars: dict | None = None,
        verbosity: int = 0,
    ) -> PlaybookResult:
        """Execute a playbook with ansible-runner.

        Raises:
            AnsibleError: If the playbook or inventory is missing
        """
        import ansible_runner

        playbook_path = self.playbook_dir / playbook
        if not playbook_path.exists():
            available = ", ".join(self.available_playbooks()) or "none"
            raise AnsibleError(
                f"Playbook not found: {playbook_path}",
                f"Available playbooks in {self.playbook_dir}: {available}",
            )
        if not self.inventory.exists():
            raise AnsibleError(f"Inventory file not found: {self.inventory}")

        runner_params = {
            "private_data_dir": str(self.private_data_dir),
            "playbook": f"playbooks/{playbook}",
            "inventory": str(self.inventory.absolute()),
            "quiet": False,
            "verbosity": verbosity,
        }
        if check:
            runner_params["cmdline"] = "--check"
        if tags:
            runner_params["tags"] = tags
        if skip_tags:
            runner_params["skip_tags"] = skip_tags
        if limit:
            runner_params["limit"] = limit
        if extravars:
            runner_params["extravars"] = extravars

        logger.info(f"Running playbook {playbook} against {self.inventory}")
        runner = ansible_runner.run(**runner_params)
        logger.info(f"Playbook {playbook} finished: {runner.status} (rc={runner.rc})")
        return PlaybookResult(status=runner.status, rc=runner.rc, stats=runner.stats or {})
