"""
Static feature catalog and default role policy.

The catalog is configuration, not runtime data: ``sync_feature_catalog`` mirrors
it into the ``features`` table. Removing an entry here retires the feature
(``is_active=False``); rows are never deleted because grants reference them.
"""
from collections import OrderedDict
from typing import Dict, Iterable, List, NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Feature
from app.features.users.models import OrgRole
from app.utils import get_logger


log = get_logger(__name__)


class FeatureSpec(NamedTuple):
    key: str
    name: str
    category: str
    description: str


MANAGE_PERMISSIONS = "manage_permissions"
MANAGE_USERS = "manage_users"
VIEW_USERS = "view_users"
VIEW_AUDIT_LOGS = "view_audit_logs"


CATEGORY_LABELS = OrderedDict([
    ("leads", "Lead Management"),
    ("campaigns", "Campaign Management"),
    ("projects", "Project Management"),
    ("calls", "Call Management"),
    ("analytics", "Analytics & Insights"),
    ("users", "User Management"),
    ("settings", "Settings & Configuration"),
    ("audit", "Audit & Compliance"),
    ("inventory", "Inventory Management"),
    ("other", "Other"),
])


FEATURE_CATALOG: List[FeatureSpec] = [
    # Leads
    FeatureSpec("view_leads", "View Leads", "leads", "Open the leads workspace"),
    FeatureSpec("view_own_leads", "View Own Leads", "leads", "See leads assigned to yourself"),
    FeatureSpec("view_team_leads", "View Team Leads", "leads", "See leads assigned to your team"),
    FeatureSpec("view_all_leads", "View All Leads", "leads", "See every lead in the organization"),
    FeatureSpec("create_leads", "Create Leads", "leads", "Add leads manually or by upload"),
    FeatureSpec("edit_leads", "Edit Leads", "leads", "Edit lead details"),
    FeatureSpec("edit_own_leads", "Edit Own Leads", "leads", "Edit leads assigned to yourself"),
    FeatureSpec("edit_team_leads", "Edit Team Leads", "leads", "Edit leads assigned to your team"),
    FeatureSpec("edit_all_leads", "Edit All Leads", "leads", "Edit any lead in the organization"),
    FeatureSpec("delete_leads", "Delete Leads", "leads", "Delete leads"),
    FeatureSpec("assign_leads", "Assign Leads", "leads", "Assign leads to team members"),
    # Campaigns
    FeatureSpec("view_campaigns", "View Campaigns", "campaigns", "See AI calling campaigns"),
    FeatureSpec("create_campaigns", "Create Campaigns", "campaigns", "Create AI calling campaigns"),
    FeatureSpec("edit_campaigns", "Edit Campaigns", "campaigns", "Edit, start and cancel campaigns"),
    FeatureSpec("delete_campaigns", "Delete Campaigns", "campaigns", "Delete campaigns"),
    # Projects
    FeatureSpec("view_projects", "View Projects", "projects", "See real-estate projects"),
    FeatureSpec("create_projects", "Create Projects", "projects", "Create projects"),
    FeatureSpec("edit_projects", "Edit Projects", "projects", "Edit projects"),
    FeatureSpec("delete_projects", "Delete Projects", "projects", "Delete projects"),
    # Calls
    FeatureSpec("view_own_calls", "View Own Calls", "calls", "See your own call logs"),
    FeatureSpec("view_team_calls", "View Team Calls", "calls", "See your team's call logs"),
    FeatureSpec("view_all_calls", "View All Calls", "calls", "See every call log"),
    FeatureSpec("manage_calls", "Manage Calls", "calls", "Retry, cancel and analyze calls"),
    # Analytics
    FeatureSpec("view_own_analytics", "View Own Analytics", "analytics", "Personal performance dashboard"),
    FeatureSpec("view_team_analytics", "View Team Analytics", "analytics", "Team performance dashboard"),
    FeatureSpec("export_reports", "Export Reports", "analytics", "Export analytics reports"),
    # Users
    FeatureSpec(VIEW_USERS, "View Users", "users", "See organization members"),
    FeatureSpec("create_users", "Invite Users", "users", "Invite new members"),
    FeatureSpec(MANAGE_USERS, "Manage Users", "users", "Change member roles and membership"),
    FeatureSpec(MANAGE_PERMISSIONS, "Manage Permissions", "users", "Edit role and user permissions"),
    # Settings
    FeatureSpec("view_settings", "View Settings", "settings", "See organization settings"),
    FeatureSpec("manage_settings", "Manage Settings", "settings", "Change organization settings"),
    # Audit
    FeatureSpec(VIEW_AUDIT_LOGS, "View Audit Logs", "audit", "Browse the audit trail"),
    # Inventory
    FeatureSpec("view_inventory", "View Inventory", "inventory", "See property inventory"),
    FeatureSpec("manage_inventory", "Manage Inventory", "inventory", "Edit properties and their status"),
]

FEATURE_KEYS = frozenset(entry.key for entry in FEATURE_CATALOG)


_EMPLOYEE_DEFAULTS = {
    "view_leads",
    "view_own_leads",
    "create_leads",
    "edit_own_leads",
    "view_campaigns",
    "view_projects",
    "view_own_calls",
    "view_own_analytics",
    "view_settings",
    "view_inventory",
}

DEFAULT_ROLE_POLICY: Dict[str, frozenset] = {
    OrgRole.EMPLOYEE.value: frozenset(_EMPLOYEE_DEFAULTS),
    OrgRole.MANAGER.value: frozenset(_EMPLOYEE_DEFAULTS | {
        "view_team_leads",
        "edit_leads",
        "edit_team_leads",
        "assign_leads",
        "create_campaigns",
        "edit_campaigns",
        "create_projects",
        "edit_projects",
        "view_team_calls",
        "manage_calls",
        "view_team_analytics",
        "export_reports",
        VIEW_USERS,
        "create_users",
    }),
}


def default_policy_for(role: str) -> Dict[str, bool]:
    """Full ``{feature_key: enabled}`` map for a role, covering every catalog key."""
    enabled = DEFAULT_ROLE_POLICY.get(role, frozenset())
    return {entry.key: entry.key in enabled for entry in FEATURE_CATALOG}


async def sync_feature_catalog(session: AsyncSession) -> int:
    """
    Mirror ``FEATURE_CATALOG`` into the ``features`` table.

    Inserts new keys, refreshes labels of existing ones, re-activates keys that
    came back and retires keys no longer listed. The caller commits.

    Returns:
        Number of rows inserted or changed
    """
    result = await session.execute(select(Feature))
    existing = {feature.key: feature for feature in result.scalars().all()}
    changed = 0

    for position, entry in enumerate(FEATURE_CATALOG):
        feature = existing.pop(entry.key, None)
        if feature is None:
            session.add(Feature(
                key=entry.key,
                name=entry.name,
                category=entry.category,
                description=entry.description,
                sort_order=position,
                is_active=True,
            ))
            changed += 1
            continue

        values = dict(name=entry.name, category=entry.category, description=entry.description,
                      sort_order=position, is_active=True)
        if any(getattr(feature, attr) != value for attr, value in values.items()):
            for attr, value in values.items():
                setattr(feature, attr, value)
            changed += 1

    for feature in existing.values():
        if feature.is_active:
            log.info("Retiring feature %s (no longer in catalog)", feature.key)
            feature.is_active = False
            changed += 1

    await session.flush()
    if changed:
        log.info("Feature catalog synced, %d row(s) changed", changed)
    return changed


def group_by_category(features: Iterable[Feature]) -> Dict[str, List[Feature]]:
    """
    Group active features by category, in catalog category order then label.

    Unknown categories are collected under ``other``.
    """
    grouped: Dict[str, List[Feature]] = OrderedDict()
    ordered = sorted(
        (f for f in features if f.is_active),
        key=lambda f: (
            list(CATEGORY_LABELS).index(f.category) if f.category in CATEGORY_LABELS else len(CATEGORY_LABELS),
            f.name,
        ),
    )
    for feature in ordered:
        category = feature.category if feature.category in CATEGORY_LABELS else "other"
        grouped.setdefault(category, []).append(feature)
    return grouped
