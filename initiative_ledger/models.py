"""
Typed application boundary for ledger operations.

Status enumerations are closed StrEnum types with an UNKNOWN fallback for
legacy values. Inputs are pydantic models; patches record which fields were
explicitly supplied through ``model_fields_set`` so an explicit ``null`` can
clear a nullable column while an absent field keeps the stored value.
"""

import json
from typing import Annotated, Any

import pydantic
from pydantic import AfterValidator, AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from initiative_ledger.compat import StrEnum
from initiative_ledger.errors import ValidationError

# =============================================================================
# STATUS ENUMERATIONS
# =============================================================================


class TaggedEnum(StrEnum):
    """StrEnum whose ``parse`` maps unrecognized stored values to UNKNOWN."""

    @classmethod
    def parse(cls, raw: Any):
        try:
            return cls(raw)
        except ValueError:
            return cls("unknown")

    @classmethod
    def known(cls) -> list[str]:
        return [m.value for m in cls if m.value != "unknown"]


class InitiativeState(TaggedEnum):
    DRAFT = "draft"
    CHARTERED = "chartered"
    FUNDED = "funded"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class ParticipantKind(StrEnum):
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"


class ParticipantRole(TaggedEnum):
    STEWARD = "steward"
    COORDINATOR = "coordinator"
    FUNDER = "funder"
    CONTRIBUTOR = "contributor"
    OBSERVER = "observer"
    UNKNOWN = "unknown"


class ParticipantStatus(TaggedEnum):
    INVITED = "invited"
    ACTIVE = "active"
    REMOVED = "removed"
    UNKNOWN = "unknown"


class ParticipantAction(StrEnum):
    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"


class ListScope(StrEnum):
    ACTIVE = "active"
    MINE = "mine"
    ALL = "all"


class OpportunityStatus(TaggedEnum):
    DRAFT = "draft"
    OPEN = "open"
    FILLED = "filled"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class EngagementStatus(TaggedEnum):
    PROPOSED = "proposed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class MilestoneStatus(TaggedEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


# =============================================================================
# FIELD VALIDATORS
# =============================================================================


def _parse_json_string(value: Any) -> Any:
    """Accept a JSON document as text wherever a structured value is expected."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"not valid JSON: {e.msg}") from e
    return value


def _require_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("is required")
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


Title = Annotated[str, AfterValidator(_require_text)]
JsonValue = Annotated[Any, BeforeValidator(_parse_json_string)]
OptionalStatus = Annotated[str | None, BeforeValidator(_blank_to_none)]


def _known_state(value: Any) -> InitiativeState | None:
    """A recognized initiative state, or None for anything blank or unrecognized."""
    if not isinstance(value, str):
        return None
    state = InitiativeState.parse(value.strip())
    return None if state == InitiativeState.UNKNOWN else state


def _state_or_draft(value: Any) -> InitiativeState:
    return _known_state(value) or InitiativeState.DRAFT


RequestedState = Annotated[InitiativeState, BeforeValidator(_state_or_draft)]


def _json_alias(name: str) -> AliasChoices:
    """Accept both ``budget`` and the column-style ``budget_json`` keys."""
    return AliasChoices(name, f"{name}_json")


# =============================================================================
# TYPED JSON SHAPES
# =============================================================================


class _Shape(BaseModel):
    model_config = ConfigDict(extra="allow")


class Budget(_Shape):
    amount: float | None = None
    currency: str | None = None


class EngagementTerms(_Shape):
    rate: float | None = None
    currency: str | None = None
    hours: float | None = None
    deliverables: list[str] | None = None


class MilestoneEvidence(_Shape):
    url: str | None = None
    notes: str | None = None
    attachments: list[str] | None = None


class Payout(_Shape):
    amount: float | None = None
    currency: str | None = None
    recipient: str | None = None


BudgetField = Annotated[Budget | None, BeforeValidator(_parse_json_string)]
TermsField = Annotated[EngagementTerms | None, BeforeValidator(_parse_json_string)]
EvidenceField = Annotated[MilestoneEvidence | None, BeforeValidator(_parse_json_string)]
PayoutField = Annotated[Payout | None, BeforeValidator(_parse_json_string)]
MetadataField = Annotated[dict[str, Any] | None, BeforeValidator(_parse_json_string)]


# =============================================================================
# INPUT MODELS
# =============================================================================


class InputModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Actor(InputModel):
    """Who is credited with a mutation: an individual id or a wallet address."""

    individual_id: int | None = Field(
        None, validation_alias=AliasChoices("individual_id", "actor_individual_id")
    )
    address: str | None = Field(None, validation_alias=AliasChoices("address", "actor_eoa"))
    org_id: int | None = Field(None, validation_alias=AliasChoices("org_id", "actor_org_id"))

    @classmethod
    def of(cls, value: Any) -> "Actor":
        """Coerce an int id, an address string, a mapping, or None."""
        if isinstance(value, Actor):
            return value
        if value is None:
            return cls()
        if isinstance(value, bool):
            raise ValidationError("actor", "must be an individual id or address")
        if isinstance(value, int):
            return cls(individual_id=value)
        if isinstance(value, str):
            return cls(address=value)
        return parse_input(cls, value)


class ParticipantSeed(InputModel):
    """Participant supplied at initiative creation or via upsert."""

    participant_kind: ParticipantKind
    individual_id: int | None = None
    organization_id: int | None = None
    role: OptionalStatus = None
    status: OptionalStatus = None

    @pydantic.model_validator(mode="after")
    def _clear_other_target(self):
        # Only the id matching the kind is stored
        if self.participant_kind == ParticipantKind.INDIVIDUAL:
            self.organization_id = None
        else:
            self.individual_id = None
        return self

    def target_id(self) -> int | None:
        if self.participant_kind == ParticipantKind.INDIVIDUAL:
            return self.individual_id
        return self.organization_id

    def target_field(self) -> str:
        if self.participant_kind == ParticipantKind.INDIVIDUAL:
            return "individual_id"
        return "organization_id"


class InitiativeCreate(InputModel):
    title: Title
    summary: str | None = None
    state: RequestedState = InitiativeState.DRAFT
    created_by_individual_id: int | None = None
    actor_address: str | None = Field(
        None, validation_alias=AliasChoices("actor_address", "actor_eoa")
    )
    created_by_org_id: int | None = None
    governance: JsonValue = Field(None, validation_alias=_json_alias("governance"))
    budget: BudgetField = Field(None, validation_alias=_json_alias("budget"))
    payout_rules: JsonValue = Field(None, validation_alias=_json_alias("payout_rules"))
    metadata: MetadataField = Field(None, validation_alias=_json_alias("metadata"))
    initial_participants: list[Any] = Field(default_factory=list)
    coalition_org_ids: list[Any] = Field(default_factory=list)


class InitiativePatch(InputModel):
    """Merge patch: only fields in ``model_fields_set`` are written."""

    title: Title | None = None
    summary: str | None = None
    state: InitiativeState | None = None
    governance: JsonValue = Field(None, validation_alias=_json_alias("governance"))
    budget: BudgetField = Field(None, validation_alias=_json_alias("budget"))
    payout_rules: JsonValue = Field(None, validation_alias=_json_alias("payout_rules"))
    metadata: MetadataField = Field(None, validation_alias=_json_alias("metadata"))

    @pydantic.model_validator(mode="before")
    @classmethod
    def _drop_unrecognized_state(cls, data: Any) -> Any:
        # A state that is blank or not recognized leaves the stored state alone
        if isinstance(data, dict) and "state" in data and _known_state(data["state"]) is None:
            data = {k: v for k, v in data.items() if k != "state"}
        return data

    @pydantic.model_validator(mode="after")
    def _non_nullable(self):
        if "title" in self.model_fields_set and self.title is None:
            raise ValueError("title cannot be cleared")
        return self


class WorkstreamCreate(InputModel):
    title: Title
    description: str | None = None
    status: OptionalStatus = None
    sort_order: int = 0


class OutcomeCreate(InputModel):
    title: Title
    metric: JsonValue = Field(None, validation_alias=_json_alias("metric"))
    status: OptionalStatus = None


class OpportunityCreate(InputModel):
    title: Title
    description: str | None = None
    workstream_id: int | None = None
    required_skills: JsonValue = Field(None, validation_alias=_json_alias("required_skills"))
    budget: BudgetField = Field(None, validation_alias=_json_alias("budget"))
    status: OptionalStatus = None
    created_by_org_id: int | None = None


class EngagementCreate(InputModel):
    initiative_id: int | None = None
    requesting_organization_id: int | None = None
    contributor_individual_id: int | None = None
    contributor_address: str | None = Field(
        None, validation_alias=AliasChoices("contributor_address", "contributor_eoa")
    )
    contributor_agent_row_id: int | None = None
    terms: TermsField = Field(None, validation_alias=_json_alias("terms"))
    status: OptionalStatus = None


class EngagementPatch(InputModel):
    status: OptionalStatus = None
    terms: TermsField = Field(None, validation_alias=_json_alias("terms"))


class MilestoneCreate(InputModel):
    title: Title
    due_at: int | None = None
    status: OptionalStatus = None
    evidence: EvidenceField = Field(None, validation_alias=_json_alias("evidence"))
    payout: PayoutField = Field(None, validation_alias=_json_alias("payout"))


class MilestonePatch(InputModel):
    status: OptionalStatus = None
    evidence: EvidenceField = Field(None, validation_alias=_json_alias("evidence"))
    payout: PayoutField = Field(None, validation_alias=_json_alias("payout"))


# =============================================================================
# COERCION
# =============================================================================


def parse_input(model_cls: type[BaseModel], data: Any) -> BaseModel:
    """
    Validate *data* into *model_cls*, translating pydantic errors into the
    ledger's ValidationError naming the first offending field.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data or {})
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or model_cls.__name__
        message = first["msg"].removeprefix("Value error, ")
        raise ValidationError(field, message) from e


def patch_values(patch: BaseModel, columns: dict[str, str]) -> dict[str, Any]:
    """
    Map explicitly supplied patch fields to column values.

    *columns* maps field name to column name. Fields absent from the patch are
    omitted so the stored value is kept.
    """
    values = {}
    for name in patch.model_fields_set:
        if name not in columns:
            continue
        value = getattr(patch, name)
        if isinstance(value, StrEnum):
            value = value.value
        values[columns[name]] = value
    return values
