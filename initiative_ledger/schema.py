"""
Declarative Schema Definition — the single source of truth.

Every table and index the ledger uses lives here. The schema_engine reads
this and converges any database to match.

Adding a column = add one line here. The engine handles the rest.

Column definitions use CREATE TABLE syntax. Tables marked ``external`` are
owned by the identity module: the engine only creates them when absent and
never alters them.
"""

from collections import OrderedDict

# =============================================================================
# Schema version: bump when you change this file
# =============================================================================
SCHEMA_VERSION = 3

_NOW = "INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))"

# =============================================================================
# Table Definitions
#
# Format: TABLES[name] = {"columns": [(col_name, col_ddl), ...],
#                         "unique": [(col, ...), ...],
#                         "external": bool}
# =============================================================================

TABLES: dict[str, dict] = OrderedDict()

# ---------------------------------------------------------------------------
# Initiatives
# ---------------------------------------------------------------------------
TABLES["initiatives"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("title", "TEXT NOT NULL"),
        ("summary", "TEXT"),
        ("state", "TEXT NOT NULL DEFAULT 'draft'"),
        ("created_by_individual_id", "INTEGER"),
        ("created_by_org_id", "INTEGER"),
        # JSON blobs
        ("governance_json", "TEXT"),
        ("budget_json", "TEXT"),
        ("payout_rules_json", "TEXT"),
        ("metadata_json", "TEXT"),
        # Timestamps
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

# Multi-select coalition organization tags
TABLES["initiative_coalitions"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("initiative_id", "INTEGER NOT NULL"),
        ("organization_id", "INTEGER NOT NULL"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
    "unique": [("initiative_id", "organization_id")],
}

TABLES["initiative_participants"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("initiative_id", "INTEGER NOT NULL"),
        ("participant_kind", "TEXT NOT NULL"),
        ("individual_id", "INTEGER"),
        ("organization_id", "INTEGER"),
        ("role", "TEXT NOT NULL DEFAULT 'observer'"),
        ("status", "TEXT NOT NULL DEFAULT 'invited'"),
        ("invited_by_individual_id", "INTEGER"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
    "unique": [("initiative_id", "participant_kind", "individual_id", "organization_id")],
}

TABLES["initiative_workstreams"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("initiative_id", "INTEGER NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'active'"),
        ("sort_order", "INTEGER NOT NULL DEFAULT 0"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["initiative_outcomes"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("initiative_id", "INTEGER NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("metric_json", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'defined'"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

# ---------------------------------------------------------------------------
# Sourcing: opportunities, engagements, milestones
# ---------------------------------------------------------------------------
TABLES["opportunities"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("initiative_id", "INTEGER NOT NULL"),
        ("workstream_id", "INTEGER"),
        ("title", "TEXT NOT NULL"),
        ("description", "TEXT"),
        ("required_skills_json", "TEXT"),
        ("budget_json", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("created_by_individual_id", "INTEGER"),
        ("created_by_org_id", "INTEGER"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["engagements"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("initiative_id", "INTEGER NOT NULL"),
        ("opportunity_id", "INTEGER NOT NULL"),
        ("requesting_organization_id", "INTEGER"),
        ("contributor_individual_id", "INTEGER"),
        ("contributor_agent_row_id", "INTEGER"),
        ("terms_json", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'proposed'"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["milestones"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("engagement_id", "INTEGER NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("due_at", "INTEGER"),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("evidence_json", "TEXT"),
        ("payout_json", "TEXT"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

# ---------------------------------------------------------------------------
# Attestations (append-only)
# ---------------------------------------------------------------------------
TABLES["attestations"] = {
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("attestation_type", "TEXT NOT NULL"),
        ("payload_json", "TEXT"),
        ("initiative_id", "INTEGER"),
        ("opportunity_id", "INTEGER"),
        ("engagement_id", "INTEGER"),
        ("milestone_id", "INTEGER"),
        ("actor_individual_id", "INTEGER"),
        ("actor_org_id", "INTEGER"),
        # External chain metadata
        ("chain_id", "INTEGER"),
        ("tx_hash", "TEXT"),
        ("eas_uid", "TEXT"),
        ("created_at", _NOW),
    ],
}

# ---------------------------------------------------------------------------
# Identity tables (owned by the identity module; read-only here)
# ---------------------------------------------------------------------------
TABLES["individuals"] = {
    "external": True,
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("email", "TEXT UNIQUE"),
        ("first_name", "TEXT"),
        ("last_name", "TEXT"),
        ("eoa_address", "TEXT"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["organizations"] = {
    "external": True,
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("ens_name", "TEXT"),
        ("agent_name", "TEXT"),
        ("org_name", "TEXT"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
}

TABLES["individual_organizations"] = {
    "external": True,
    "columns": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("individual_id", "INTEGER NOT NULL"),
        ("organization_id", "INTEGER NOT NULL"),
        ("role", "TEXT"),
        ("created_at", _NOW),
        ("updated_at", _NOW),
    ],
    "unique": [("individual_id", "organization_id")],
}

# =============================================================================
# Indexes: (name, table, columns)
# =============================================================================

INDEXES: list[tuple[str, str, list[str]]] = [
    ("idx_initiatives_state", "initiatives", ["state"]),
    ("idx_initiative_coalitions_initiative", "initiative_coalitions", ["initiative_id"]),
    ("idx_initiative_coalitions_org", "initiative_coalitions", ["organization_id"]),
    ("idx_initiative_participants_initiative", "initiative_participants", ["initiative_id"]),
    ("idx_initiative_participants_individual", "initiative_participants", ["individual_id"]),
    ("idx_initiative_participants_org", "initiative_participants", ["organization_id"]),
    ("idx_workstreams_initiative", "initiative_workstreams", ["initiative_id"]),
    ("idx_outcomes_initiative", "initiative_outcomes", ["initiative_id"]),
    ("idx_opportunities_initiative", "opportunities", ["initiative_id"]),
    ("idx_opportunities_status", "opportunities", ["status"]),
    ("idx_engagements_initiative", "engagements", ["initiative_id"]),
    ("idx_engagements_opportunity", "engagements", ["opportunity_id"]),
    ("idx_engagements_status", "engagements", ["status"]),
    ("idx_milestones_engagement", "milestones", ["engagement_id"]),
    ("idx_milestones_status", "milestones", ["status"]),
    ("idx_attestations_initiative", "attestations", ["initiative_id", "created_at"]),
    ("idx_attestations_type", "attestations", ["attestation_type", "created_at"]),
]

# JSON columns are decoded on read by db.decode_row
JSON_SUFFIX = "_json"

# =============================================================================
# Required unique expression indexes: (name, table, expression)
#
# SQLite treats NULLs as distinct inside UNIQUE constraints, so participant
# identity is keyed on IFNULL(...) instead. Unlike INDEXES these are part of
# provisioning: failure to create one fails ensure_schema().
# =============================================================================

UNIQUE_EXPRESSION_INDEXES: list[tuple[str, str, str]] = [
    (
        "uq_initiative_participants_target",
        "initiative_participants",
        "initiative_id, participant_kind, IFNULL(individual_id, 0), IFNULL(organization_id, 0)",
    ),
]
