"""Marketplace policy — runtime knobs loaded from config/marketplace_policy.json.

The role → permission table is not read from config. It is the fixed
table in coachmarket.rbac.permissions.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from coachmarket.rbac.permissions import (
    ADMIN_ONLY_PERMISSIONS,
    COACH_ONLY_PERMISSIONS,
    ROLE_PERMISSIONS,
    Permission,
    Role,
)

POLICY_FILENAME = "marketplace_policy.json"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


@dataclass(frozen=True)
class MarketplacePolicy:
    """Resolved policy values.

    max_bids_per_coach_per_task of None means unbounded.
    """
    currency: str = "usd"
    require_approved_coach: bool = True
    max_bids_per_coach_per_task: Optional[int] = None

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MarketplacePolicy:
        escrow = data.get("escrow", {})
        bidding = data.get("bidding", {})
        return MarketplacePolicy(
            currency=escrow.get("currency", "usd"),
            require_approved_coach=bidding.get("require_approved_coach", True),
            max_bids_per_coach_per_task=bidding.get("max_bids_per_coach_per_task"),
        )

    @staticmethod
    def from_config_dir(config_dir: Path) -> MarketplacePolicy:
        """Load policy from a config directory; defaults if the file is absent."""
        path = config_dir / POLICY_FILENAME
        if not path.exists():
            return MarketplacePolicy()
        policy = MarketplacePolicy.from_dict(load_json(path))
        errors = policy.validate()
        if errors:
            raise ValueError(f"Invalid policy in {path}: {'; '.join(errors)}")
        return policy

    def validate(self) -> list[str]:
        """Return policy errors (empty = OK)."""
        errors: list[str] = []
        if not isinstance(self.currency, str) or not self.currency.strip():
            errors.append("escrow.currency must be a non-empty string")
        if not isinstance(self.require_approved_coach, bool):
            errors.append("bidding.require_approved_coach must be a boolean")
        cap = self.max_bids_per_coach_per_task
        if cap is not None and (isinstance(cap, bool) or not isinstance(cap, int) or cap < 1):
            errors.append("bidding.max_bids_per_coach_per_task must be null or >= 1")
        return errors


def check_invariants(config_dir: Path) -> list[str]:
    """Check the role table and the policy file. Returns errors (empty = OK)."""
    errors: list[str] = []

    # Admin is the union of every permission in the catalog
    if ROLE_PERMISSIONS[Role.ADMIN] != frozenset(Permission):
        missing = frozenset(Permission) - ROLE_PERMISSIONS[Role.ADMIN]
        errors.append(
            f"admin must hold every permission; missing: "
            f"{sorted(p.value for p in missing)}"
        )

    # Every role has an entry
    for role in Role:
        if role not in ROLE_PERMISSIONS:
            errors.append(f"role {role.value} has no permission entry")

    seeker = ROLE_PERMISSIONS.get(Role.JOB_SEEKER, frozenset())
    leaked = seeker & (COACH_ONLY_PERMISSIONS | ADMIN_ONLY_PERMISSIONS)
    if leaked:
        errors.append(
            f"job_seeker must not hold coach-only or admin-only permissions: "
            f"{sorted(p.value for p in leaked)}"
        )

    coach = ROLE_PERMISSIONS.get(Role.COACH, frozenset())
    leaked = coach & ADMIN_ONLY_PERMISSIONS
    if leaked:
        errors.append(
            f"coach must not hold admin-only permissions: "
            f"{sorted(p.value for p in leaked)}"
        )

    path = config_dir / POLICY_FILENAME
    if path.exists():
        try:
            errors.extend(MarketplacePolicy.from_dict(load_json(path)).validate())
        except json.JSONDecodeError as e:
            errors.append(f"{path.name} is not valid JSON: {e}")
    return errors
