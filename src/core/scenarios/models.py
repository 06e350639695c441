from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

OverrideMode = Literal["auto", "manual"]
ScenarioStatus = Literal["draft", "active", "archived"]
ScenarioInstanceStatus = Literal["draft", "applied"]
FundType = Literal["loan", "cash"]
ApplyOperationType = Literal["create", "update"]
ApplicationStatus = Literal["applied", "rolled_back"]
ConflictResolutionChoice = Literal["scenario", "live"]
FundingConflictType = Literal["amount_mismatch", "new_allocation"]


class OverrideTriplet(BaseModel):
    mode: OverrideMode = Field(
        default="auto",
        description="Whether the effective value is the computed or the user-pinned value.",
        examples=["manual"],
    )
    auto: Optional[Any] = Field(
        default=None,
        description="Value derived by the calculation pipeline.",
        examples=[500],
    )
    manual: Optional[Any] = Field(
        default=None,
        description="Value pinned by the user.",
        examples=[550],
    )


class ScenarioCreateRequest(BaseModel):
    name: str = Field(description="Scenario display name.", examples=["Conservative"])
    description: Optional[str] = Field(
        default=None,
        description="Optional free-text description.",
        examples=["Lower rent growth, higher vacancy."],
    )
    tags: List[str] = Field(default_factory=list, examples=[["rates", "2026"]])
    settings: Dict[str, Any] = Field(default_factory=dict, examples=[{"horizon_years": 10}])


class ScenarioUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, examples=["Conservative v2"])
    description: Optional[str] = Field(default=None, examples=["Revised vacancy assumptions."])
    status: Optional[ScenarioStatus] = Field(default=None, examples=["archived"])
    tags: Optional[List[str]] = Field(default=None, examples=[["rates"]])
    settings: Optional[Dict[str, Any]] = Field(default=None, examples=[{"horizon_years": 15}])
    snapshot: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Opaque scenario snapshot blob; replacing it bumps snapshot_version.",
        examples=[{"projections": []}],
    )


class ScenarioInstanceCreateRequest(BaseModel):
    display_name: str = Field(description="Name of the new case.", examples=["Unit 4 - Parramatta"])
    fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Initial field set; override fields use the mode/auto/manual shape.",
        examples=[{"weekly_rent": {"mode": "auto", "auto": 500, "manual": None}}],
    )


class ScenarioInstanceUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, examples=["Unit 4 - revised"])
    fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Fields to set; keys not listed are left untouched.",
        examples=[{"weekly_rent": {"mode": "manual", "auto": 500, "manual": 550}}],
    )
    remove_fields: List[str] = Field(
        default_factory=list,
        description="Field keys to drop from the scenario copy.",
        examples=[["council_fees"]],
    )


class ScenarioFundingCreateRequest(BaseModel):
    fund_id: str = Field(description="Referenced loan or cash fund.", examples=["fund_loan_01"])
    fund_type: FundType = Field(examples=["loan"])
    amount_allocated: Decimal = Field(examples=["20000"])
    amount_used: Decimal = Field(default=Decimal("0"), examples=["0"])
    notes: Optional[str] = Field(default=None, examples=["Deposit top-up"])


class ScenarioFundingUpdateRequest(BaseModel):
    amount_allocated: Optional[Decimal] = Field(default=None, examples=["25000"])
    amount_used: Optional[Decimal] = Field(default=None, examples=["5000"])
    notes: Optional[str] = Field(default=None, examples=["Revised allocation"])


class ScenarioApplyRequest(BaseModel):
    resolutions: Dict[str, ConflictResolutionChoice] = Field(
        default_factory=dict,
        description="Explicit per-field choice for fields that diverged on both sides.",
        examples=[{"weekly_rent": "scenario"}],
    )


class ScenarioRollbackRequest(BaseModel):
    application_id: Optional[str] = Field(default=None, examples=["sfa_001"])
    scenario_instance_id: Optional[str] = Field(default=None, examples=["si_001"])


class ScenarioRecord(BaseModel):
    scenario_id: str = Field(description="Scenario identifier.", examples=["sc_001"])
    owner_id: str = Field(description="Owning user identifier.", examples=["user_1"])
    name: str = Field(description="Scenario display name.", examples=["Conservative"])
    description: Optional[str] = Field(default=None, examples=["Lower rent growth."])
    is_primary: bool = Field(
        default=False,
        description="At most one scenario per owner carries the primary flag.",
        examples=[False],
    )
    status: ScenarioStatus = Field(default="draft", examples=["draft"])
    tags: List[str] = Field(default_factory=list, examples=[["rates"]])
    settings: Dict[str, Any] = Field(default_factory=dict, examples=[{}])
    snapshot: Dict[str, Any] = Field(default_factory=dict, examples=[{}])
    snapshot_version: int = Field(default=1, examples=[1])
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])
    updated_at: datetime = Field(examples=["2026-02-19T12:05:00+00:00"])


class ScenarioInstanceRecord(BaseModel):
    scenario_instance_id: str = Field(
        description="Scenario instance identifier.", examples=["si_001"]
    )
    scenario_id: str = Field(description="Owning scenario.", examples=["sc_001"])
    owner_id: str = Field(examples=["user_1"])
    source_instance_id: Optional[str] = Field(
        default=None,
        description="Live instance this copy was branched from; null for scenario-only cases.",
        examples=["inst_001"],
    )
    display_name: str = Field(examples=["Unit 4 - Parramatta"])
    fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Editable scenario field set.",
        examples=[{"weekly_rent": {"mode": "manual", "auto": 500, "manual": 550}}],
    )
    baseline_fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Live field set captured at branch time; the diff baseline.",
        examples=[{"weekly_rent": {"mode": "auto", "auto": 500, "manual": None}}],
    )
    status: ScenarioInstanceStatus = Field(default="draft", examples=["draft"])
    applied_at: Optional[datetime] = Field(default=None, examples=[None])
    last_synced_at: Optional[datetime] = Field(default=None, examples=[None])
    version: int = Field(
        default=1,
        description="Optimistic concurrency token, bumped on every write.",
        examples=[1],
    )
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])
    updated_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])


class ScenarioInstanceFundingRecord(BaseModel):
    scenario_funding_id: str = Field(examples=["sf_001"])
    scenario_instance_id: str = Field(examples=["si_001"])
    owner_id: str = Field(examples=["user_1"])
    fund_id: str = Field(examples=["fund_loan_01"])
    fund_type: FundType = Field(examples=["loan"])
    amount_allocated: Decimal = Field(examples=["20000"])
    amount_used: Decimal = Field(default=Decimal("0"), examples=["0"])
    notes: Optional[str] = Field(default=None, examples=[None])
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])
    updated_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])


class LiveInstanceRecord(BaseModel):
    instance_id: str = Field(description="Live property case identifier.", examples=["inst_001"])
    owner_id: str = Field(examples=["user_1"])
    name: str = Field(examples=["Unit 4 - Parramatta"])
    fields: Dict[str, Any] = Field(default_factory=dict, examples=[{"purchase_price": 650000}])
    version: int = Field(default=1, examples=[1])
    created_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])
    updated_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])


class InstanceFundingRecord(BaseModel):
    funding_id: str = Field(examples=["if_001"])
    owner_id: str = Field(examples=["user_1"])
    instance_id: str = Field(examples=["inst_001"])
    fund_id: str = Field(examples=["fund_loan_01"])
    fund_type: FundType = Field(examples=["loan"])
    amount_allocated: Decimal = Field(examples=["90000"])
    amount_used: Decimal = Field(default=Decimal("0"), examples=["0"])
    notes: Optional[str] = Field(default=None, examples=[None])
    allocation_date: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])
    updated_at: datetime = Field(examples=["2026-02-19T12:00:00+00:00"])


class FundRecord(BaseModel):
    fund_id: str = Field(examples=["fund_loan_01"])
    owner_id: str = Field(examples=["user_1"])
    fund_type: FundType = Field(examples=["loan"])
    name: str = Field(examples=["Offset loan"])
    total_amount: Decimal = Field(examples=["100000"])
    available_amount: Decimal = Field(examples=["10000"])


class AppliedFieldChange(BaseModel):
    field: str = Field(examples=["weekly_rent"])
    existed_before: bool = Field(examples=[True])
    before: Optional[Any] = Field(default=None, examples=[{"mode": "auto", "auto": 500}])
    after: Optional[Any] = Field(default=None, examples=[{"mode": "manual", "manual": 550}])


class AppliedFundingChange(BaseModel):
    funding_id: str = Field(examples=["if_001"])
    fund_id: str = Field(examples=["fund_loan_01"])
    created: bool = Field(description="True when the apply inserted the row.", examples=[False])
    before_allocated: Decimal = Field(default=Decimal("0"), examples=["10000"])
    before_used: Decimal = Field(default=Decimal("0"), examples=["0"])
    after_allocated: Decimal = Field(examples=["20000"])
    after_used: Decimal = Field(examples=["0"])


class AppliedFundChange(BaseModel):
    fund_id: str = Field(examples=["fund_loan_01"])
    before_available: Decimal = Field(examples=["10000"])
    after_available: Decimal = Field(examples=["0"])


class ScenarioInstanceSnapshot(BaseModel):
    source_instance_id: Optional[str] = Field(default=None, examples=["inst_001"])
    status: ScenarioInstanceStatus = Field(examples=["draft"])
    applied_at: Optional[datetime] = Field(default=None, examples=[None])
    baseline_fields: Dict[str, Any] = Field(default_factory=dict, examples=[{}])
    adopted_fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Scenario values replaced by the live value of a conflict resolved as live.",
        examples=[{"purchase_price": 600000}],
    )


class ScenarioFundingApplicationRecord(BaseModel):
    application_id: str = Field(description="Application identifier.", examples=["sfa_001"])
    owner_id: str = Field(examples=["user_1"])
    scenario_instance_id: str = Field(examples=["si_001"])
    target_instance_id: str = Field(examples=["inst_001"])
    operation_type: ApplyOperationType = Field(examples=["update"])
    status: ApplicationStatus = Field(default="applied", examples=["applied"])
    field_changes: List[AppliedFieldChange] = Field(default_factory=list)
    funding_changes: List[AppliedFundingChange] = Field(default_factory=list)
    fund_changes: List[AppliedFundChange] = Field(default_factory=list)
    scenario_instance_before: ScenarioInstanceSnapshot = Field(
        description="Scenario instance state prior to the apply, restored on rollback."
    )
    applied_at: datetime = Field(examples=["2026-02-19T12:10:00+00:00"])
    rolled_back_at: Optional[datetime] = Field(default=None, examples=[None])


class ConflictReport(BaseModel):
    field: str = Field(description="Diverging field key.", examples=["weekly_rent"])
    baseline_value: Optional[Any] = Field(default=None, examples=[500])
    live_value: Optional[Any] = Field(default=None, examples=[520])
    scenario_value: Optional[Any] = Field(default=None, examples=[550])
    scenario_mode: Optional[OverrideMode] = Field(
        default=None,
        description="Mode of the scenario field when it is an override field.",
        examples=["manual"],
    )
    resolution: Optional[ConflictResolutionChoice] = Field(
        default=None,
        description="Which side won; null while unresolved.",
        examples=["scenario"],
    )


class ConflictCheckResult(BaseModel):
    scenario_instance_id: str = Field(examples=["si_001"])
    has_conflicts: bool = Field(examples=[True])
    conflicts: List[ConflictReport] = Field(default_factory=list)
    last_instance_update: Optional[datetime] = Field(default=None)
    last_scenario_update: Optional[datetime] = Field(default=None)


class ScenarioFundingConflict(BaseModel):
    scenario_funding_id: str = Field(examples=["sf_001"])
    fund_id: str = Field(examples=["fund_loan_01"])
    fund_type: FundType = Field(examples=["loan"])
    conflict_type: FundingConflictType = Field(examples=["amount_mismatch"])
    scenario_amount: Decimal = Field(examples=["20000"])
    live_amount: Optional[Decimal] = Field(default=None, examples=["10000"])
    live_funding_id: Optional[str] = Field(default=None, examples=["if_001"])


class ApplyResult(BaseModel):
    success: bool = Field(examples=[True])
    scenario_instance_id: str = Field(examples=["si_001"])
    operation_type: ApplyOperationType = Field(examples=["update"])
    applied_instance_id: Optional[str] = Field(default=None, examples=["inst_001"])
    application_id: Optional[str] = Field(default=None, examples=["sfa_001"])
    applied_fields: List[str] = Field(default_factory=list, examples=[["weekly_rent"]])
    conflicts: List[ConflictReport] = Field(default_factory=list)
    error: Optional[str] = Field(default=None, examples=[None])


class ScenarioInstanceBranchRequest(BaseModel):
    instance_id: str = Field(
        description="Live instance to copy into the scenario.", examples=["inst_001"]
    )
    display_name: Optional[str] = Field(
        default=None,
        description="Name for the scenario copy; defaults to the live instance name.",
        examples=["Unit 4 - rate shock"],
    )


class ScenarioSupportabilityConfigResponse(BaseModel):
    store_backend: str = Field(
        description="Configured scenario repository backend name.",
        examples=["IN_MEMORY"],
    )
    backend_ready: bool = Field(
        description="Whether the repository backend initialized with current runtime settings.",
        examples=[True],
    )
    backend_init_error: Optional[str] = Field(
        default=None,
        description="Stable initialization error code when the backend is not ready.",
        examples=["SCENARIO_POSTGRES_DSN_REQUIRED"],
    )
    scenarios_enabled: bool = Field(examples=[True])
    apply_enabled: bool = Field(examples=[True])
    conflict_resolution_enabled: bool = Field(examples=[False])
