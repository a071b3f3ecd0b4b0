"""Host networking setup: IP forwarding and NAT masquerade."""

import logging
import subprocess
from typing import Callable, Sequence

from .errors import ToolInvocationError
from .models import StepOutcome

logger = logging.getLogger(__name__)

NAT_COMMENT = "vpn-provisioner NAT masquerade"

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]


def run_command(args: Sequence[str]) -> subprocess.CompletedProcess:
    """Run a system command and capture its output."""
    try:
        return subprocess.run(list(args), capture_output=True, text=True, check=False)
    except OSError as e:
        raise ToolInvocationError(f"Cannot execute {args[0]}: {e}") from e


class NetworkConfigurator:
    """Enables forwarding and installs one NAT rule, idempotently."""

    def __init__(self, runner: Runner = run_command):
        self.runner = runner

    def enable_ip_forwarding(self) -> bool:
        """
        Turn on IPv4 forwarding.

        Failure is tolerated: containers and some hosts manage this elsewhere.

        Returns:
            True if sysctl succeeded
        """
        try:
            result = self.runner(["sysctl", "-w", "net.ipv4.ip_forward=1"])
        except ToolInvocationError as e:
            logger.warning(f"Could not enable IP forwarding: {e}")
            return False

        if result.returncode != 0:
            logger.warning(f"Could not enable IP forwarding: {result.stderr.strip()}")
            return False

        logger.info("IPv4 forwarding enabled")
        return True

    def _nat_rule(self, action: str, source: str) -> list[str]:
        return [
            "iptables", "-t", "nat", action, "POSTROUTING",
            "-s", source, "-d", "0.0.0.0/0",
            "-m", "comment", "--comment", NAT_COMMENT,
            "-j", "MASQUERADE",
        ]

    def ensure_nat_masquerade(self, source: str = "0.0.0.0/0") -> StepOutcome:
        """
        Append the MASQUERADE rule to POSTROUTING unless it is present.

        Raises:
            ToolInvocationError: If iptables fails to append the rule
        """
        check = self.runner(self._nat_rule("-C", source))
        if check.returncode == 0:
            logger.info("NAT masquerade rule already installed")
            return StepOutcome.SKIPPED

        result = self.runner(self._nat_rule("-A", source))
        if result.returncode != 0:
            logger.error(f"iptables failed: {result.stderr.strip()}")
            raise ToolInvocationError(f"Installing NAT rule failed: {result.stderr.strip()}")

        logger.info(f"NAT masquerade rule installed for {source}")
        return StepOutcome.CREATED

    def configure(self, source: str = "0.0.0.0/0") -> StepOutcome:
        self.enable_ip_forwarding()
        return self.ensure_nat_masquerade(source)
