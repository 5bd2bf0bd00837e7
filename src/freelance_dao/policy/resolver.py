"""Policy resolver — loads marketplace_policy.json and exposes every
runtime decision as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

POLICY_FILE = "marketplace_policy.json"


class PolicyResolver:
    """Loads and resolves marketplace policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        resolver.quorum_percent()        # 50
        resolver.voting_period()         # timedelta(days=7)
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / POLICY_FILE))

    def _validate(self) -> None:
        if "version" not in self._policy:
            raise ValueError(f"{POLICY_FILE} missing version")
        pct = self.quorum_percent()
        if not (1 <= pct <= 100):
            raise ValueError(f"quorum_percent must be in [1, 100], got {pct}")
        if self._policy["governance"]["voting_period_seconds"] <= 0:
            raise ValueError("voting_period_seconds must be positive")
        if self.min_deposit_wei() <= 0:
            raise ValueError("min_deposit_wei must be positive")

    @property
    def version(self) -> str:
        return self._policy["version"]

    # ------------------------------------------------------------------
    # Identity gating
    # ------------------------------------------------------------------

    def employer_role(self) -> str:
        """Role an account must hold to create jobs."""
        return self._policy["identity"]["employer_role"]

    def freelancer_role(self) -> str:
        """Role an account must hold to be assigned a job."""
        return self._policy["identity"]["freelancer_role"]

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    def min_deposit_wei(self) -> int:
        return self._policy["escrow"]["min_deposit_wei"]

    # ------------------------------------------------------------------
    # Dispute governance
    # ------------------------------------------------------------------

    def quorum_percent(self) -> int:
        """Percentage of total voting supply that must participate."""
        return self._policy["governance"]["quorum_percent"]

    def voting_period(self) -> timedelta:
        """Fixed length of every dispute voting window."""
        return timedelta(seconds=self._policy["governance"]["voting_period_seconds"])


def _load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file or raise with clear path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
