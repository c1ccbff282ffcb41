"""
Escalation policy — level → threshold / audience table.

The engine never branches on level numbers directly; it asks the policy.
Swap the table (``build_policy`` or a hand-built ``EscalationPolicy``) to
change who hears about a late unit and when.

Default table:
    level 1   50 % elapsed   WORKSTREAM_LEAD                              normal
    level 2   75 % elapsed   WORKSTREAM_LEAD, PROGRAM_OWNER               high
    level 3   90 % elapsed   WORKSTREAM_LEAD, PROGRAM_OWNER, PLATFORM_ADMIN  critical

Org-scoped roles are resolved inside the unit's own organization; roles in
``global_roles`` (platform admins) are resolved across all organizations.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.models.auth import PLATFORM_ADMIN, PROGRAM_OWNER, WORKSTREAM_LEAD


@dataclass(frozen=True)
class EscalationLevel:
    level: int
    threshold_percent: int
    roles: tuple[str, ...]
    priority: str
    label: str


@dataclass(frozen=True)
class EscalationPolicy:
    levels: tuple[EscalationLevel, ...]
    global_roles: frozenset[str] = field(default_factory=lambda: frozenset({PLATFORM_ADMIN}))

    @property
    def max_level(self) -> int:
        return max(lvl.level for lvl in self.levels)

    def get(self, level: int) -> EscalationLevel | None:
        for lvl in self.levels:
            if lvl.level == level:
                return lvl
        return None

    def target_level(self, percent_elapsed: float) -> int:
        """Highest level whose threshold ``percent_elapsed`` has reached (0 if none)."""
        target = 0
        for lvl in self.levels:
            if percent_elapsed >= lvl.threshold_percent and lvl.level > target:
                target = lvl.level
        return target

    def next_manual_level(self, current_level: int) -> int:
        """Manual reports always advance exactly one level, capped at the top."""
        return min(current_level + 1, self.max_level)

    def roles_for(self, level: int) -> tuple[str, ...]:
        lvl = self.get(level)
        return lvl.roles if lvl else ()

    def priority_for(self, level: int) -> str:
        lvl = self.get(level)
        return lvl.priority if lvl else "normal"


def build_policy(thresholds: list[int] | tuple[int, ...] = (50, 75, 90)) -> EscalationPolicy:
    """Build the standard three-level policy with the given percent thresholds."""
    if len(thresholds) != 3:
        raise ValueError("Escalation policy needs exactly three thresholds")
    if list(thresholds) != sorted(thresholds) or not all(0 < t <= 100 for t in thresholds):
        raise ValueError(f"Thresholds must be ascending percentages: {thresholds}")

    t1, t2, t3 = thresholds
    return EscalationPolicy(levels=(
        EscalationLevel(1, t1, (WORKSTREAM_LEAD,), "normal", "Early warning"),
        EscalationLevel(2, t2, (WORKSTREAM_LEAD, PROGRAM_OWNER), "high", "Escalated"),
        EscalationLevel(3, t3, (WORKSTREAM_LEAD, PROGRAM_OWNER, PLATFORM_ADMIN), "critical", "Critical"),
    ))


DEFAULT_POLICY = build_policy()


def policy_from_config(app_config) -> EscalationPolicy:
    """Policy for the running app, from ESCALATION_THRESHOLDS."""
    thresholds = app_config.get("ESCALATION_THRESHOLDS") or [50, 75, 90]
    return build_policy(tuple(thresholds))
