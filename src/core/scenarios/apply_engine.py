import logging
from collections import defaultdict
from copy import deepcopy
from decimal import Decimal
from typing import Mapping, Optional

from src.core.scenarios.access import (
    load_application,
    load_fund,
    load_scenario,
    load_scenario_instance,
    new_id,
    utc_now,
)
from src.core.scenarios.diff import diff_fields, resolve_conflicts
from src.core.scenarios.errors import (
    InsufficientFundsError,
    RollbackConflictError,
    ScenarioConflictError,
    ScenarioLifecycleError,
    ScenarioNotFoundError,
    ScenarioStaleReferenceError,
)
from src.core.scenarios.features import CapabilityCheck, require_features
from src.core.scenarios.models import (
    AppliedFieldChange,
    AppliedFundChange,
    AppliedFundingChange,
    ApplyResult,
    ConflictCheckResult,
    ConflictResolutionChoice,
    FundRecord,
    InstanceFundingRecord,
    LiveInstanceRecord,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceRecord,
    ScenarioInstanceSnapshot,
)
from src.core.scenarios.repository import ScenarioRepository, ScenarioStore
from src.core.scenarios.validation import (
    normalize_fields,
    validate_allocation,
    validate_fund_type,
)

logger = logging.getLogger(__name__)

_MISSING = object()


class ScenarioApplyEngine:
    """Commits scenario copies into live data and reverses those commits.

    An apply runs load, diff, conflict policy, field commit, funding commit and
    finalize inside one unit of work. Any failure leaves live instances,
    fundings, funds and the scenario copy exactly as they were.
    """

    def __init__(
        self,
        *,
        repository: ScenarioRepository,
        capabilities: CapabilityCheck,
    ) -> None:
        self._repository = repository
        self._capabilities = capabilities

    def check_scenario_instance_conflicts(
        self, *, owner_id: str, scenario_instance_id: str
    ) -> ConflictCheckResult:
        require_features(self._capabilities, "SCENARIOS")
        scenario_instance = load_scenario_instance(
            self._repository, owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
        if scenario_instance.source_instance_id is None:
            return ConflictCheckResult(
                scenario_instance_id=scenario_instance_id,
                has_conflicts=False,
                last_scenario_update=scenario_instance.updated_at,
            )
        live = self._load_source(self._repository, scenario_instance)
        diff = diff_fields(
            scenario_fields=scenario_instance.fields,
            baseline_fields=scenario_instance.baseline_fields,
            live_fields=live.fields,
        )
        return ConflictCheckResult(
            scenario_instance_id=scenario_instance_id,
            has_conflicts=bool(diff.conflicts),
            conflicts=diff.conflicts,
            last_instance_update=live.updated_at,
            last_scenario_update=scenario_instance.updated_at,
        )

    def apply_scenario_instance(
        self,
        *,
        owner_id: str,
        scenario_instance_id: str,
        resolutions: Optional[Mapping[str, ConflictResolutionChoice]] = None,
    ) -> ApplyResult:
        require_features(self._capabilities, "SCENARIOS", "APPLY")
        resolutions = dict(resolutions or {})

        loaded = load_scenario_instance(
            self._repository, owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
        loaded_live = None
        writes = sorted(loaded.fields)
        resolved = []
        if loaded.source_instance_id is not None:
            loaded_live = self._load_source(self._repository, loaded)
            diff = diff_fields(
                scenario_fields=loaded.fields,
                baseline_fields=loaded.baseline_fields,
                live_fields=loaded_live.fields,
            )
            resolved, unresolved = resolve_conflicts(
                diff.conflicts,
                scenario_fields=loaded.fields,
                resolutions=resolutions,
                auto_resolve=self._capabilities("CONFLICT_RESOLUTION"),
            )
            if unresolved:
                logger.warning(
                    "scenario.apply.conflict",
                    extra={
                        "extra_fields": {
                            "owner_id": owner_id,
                            "scenario_instance_id": scenario_instance_id,
                            "conflict_fields": [item.field for item in unresolved],
                        }
                    },
                )
                raise ScenarioConflictError(
                    "SCENARIO_APPLY_CONFLICT",
                    conflicts=unresolved,
                    scenario_instance_id=scenario_instance_id,
                )
            writes = sorted(
                diff.writes + [item.field for item in resolved if item.resolution == "scenario"]
            )

        with self._repository.atomic() as store:
            scenario_instance = load_scenario_instance(
                store,
                owner_id=owner_id,
                scenario_instance_id=scenario_instance_id,
                for_update=True,
            )
            if scenario_instance.version != loaded.version:
                raise ScenarioStaleReferenceError(
                    "SCENARIO_INSTANCE_VERSION_CHANGED",
                    scenario_instance_id=scenario_instance_id,
                    expected_version=loaded.version,
                    actual_version=scenario_instance.version,
                )
            now = utc_now()
            if loaded_live is not None:
                live = self._load_source(store, scenario_instance, for_update=True)
                if live.version != loaded_live.version:
                    raise ScenarioStaleReferenceError(
                        "SOURCE_INSTANCE_VERSION_CHANGED",
                        scenario_instance_id=scenario_instance_id,
                        source_instance_id=live.instance_id,
                        expected_version=loaded_live.version,
                        actual_version=live.version,
                    )
                operation_type = "update"
                field_changes = _commit_fields(
                    store,
                    live=live,
                    scenario_instance=scenario_instance,
                    writes=writes,
                    now=now,
                )
            else:
                operation_type = "create"
                live = LiveInstanceRecord(
                    instance_id=new_id("inst"),
                    owner_id=owner_id,
                    name=scenario_instance.display_name,
                    fields=normalize_fields(scenario_instance.fields),
                    created_at=now,
                    updated_at=now,
                )
                store.create_instance(live)
                field_changes = [
                    AppliedFieldChange(
                        field=key, existed_before=False, before=None, after=deepcopy(value)
                    )
                    for key, value in sorted(live.fields.items())
                ]

            funding_changes, fund_changes = self._commit_fundings(
                store,
                owner_id=owner_id,
                scenario_instance=scenario_instance,
                target_instance_id=live.instance_id,
                now=now,
            )

            snapshot = ScenarioInstanceSnapshot(
                source_instance_id=scenario_instance.source_instance_id,
                status=scenario_instance.status,
                applied_at=scenario_instance.applied_at,
                baseline_fields=deepcopy(scenario_instance.baseline_fields),
            )
            # Conflicts kept on the live side take the live value into the scenario copy.
            for item in resolved:
                if item.resolution != "live":
                    continue
                snapshot.adopted_fields[item.field] = deepcopy(
                    scenario_instance.fields[item.field]
                )
                if item.field in live.fields:
                    scenario_instance.fields[item.field] = deepcopy(live.fields[item.field])
                else:
                    scenario_instance.fields.pop(item.field, None)
            scenario_instance.source_instance_id = live.instance_id
            scenario_instance.status = "applied"
            scenario_instance.applied_at = now
            scenario_instance.baseline_fields = deepcopy(live.fields)
            scenario_instance.last_synced_at = now
            scenario_instance.version += 1
            scenario_instance.updated_at = now
            store.update_scenario_instance(scenario_instance)

            application = ScenarioFundingApplicationRecord(
                application_id=new_id("sfa"),
                owner_id=owner_id,
                scenario_instance_id=scenario_instance_id,
                target_instance_id=live.instance_id,
                operation_type=operation_type,
                status="applied",
                field_changes=field_changes,
                funding_changes=funding_changes,
                fund_changes=fund_changes,
                scenario_instance_before=snapshot,
                applied_at=now,
            )
            store.create_application(application)

        logger.info(
            "scenario.apply.completed",
            extra={
                "extra_fields": {
                    "owner_id": owner_id,
                    "scenario_instance_id": scenario_instance_id,
                    "application_id": application.application_id,
                    "operation_type": operation_type,
                    "applied_instance_id": live.instance_id,
                    "field_count": len(field_changes),
                    "funding_count": len(funding_changes),
                }
            },
        )
        return ApplyResult(
            success=True,
            scenario_instance_id=scenario_instance_id,
            operation_type=operation_type,
            applied_instance_id=live.instance_id,
            application_id=application.application_id,
            applied_fields=[change.field for change in field_changes],
            conflicts=resolved,
        )

    def apply_all_scenario_instances(self, *, owner_id: str, scenario_id: str) -> list[ApplyResult]:
        """Applies every instance of a scenario, each in its own unit of work.

        A failing instance is reported in its result and does not stop the batch.
        """
        require_features(self._capabilities, "SCENARIOS", "APPLY")
        load_scenario(self._repository, owner_id=owner_id, scenario_id=scenario_id)
        results: list[ApplyResult] = []
        for row in self._repository.list_scenario_instances(scenario_id=scenario_id):
            try:
                results.append(
                    self.apply_scenario_instance(
                        owner_id=owner_id, scenario_instance_id=row.scenario_instance_id
                    )
                )
            except ScenarioLifecycleError as exc:
                results.append(
                    ApplyResult(
                        success=False,
                        scenario_instance_id=row.scenario_instance_id,
                        operation_type="update" if row.source_instance_id else "create",
                        applied_instance_id=row.source_instance_id,
                        conflicts=getattr(exc, "conflicts", []),
                        error=exc.code,
                    )
                )
        return results

    def rollback_scenario_funding(
        self,
        *,
        owner_id: str,
        application_id: Optional[str] = None,
        scenario_instance_id: Optional[str] = None,
    ) -> bool:
        """Reverses one apply.

        Picks the given application, else the latest applied one for the scenario
        instance, else the owner's latest applied one. Fails with
        RollbackConflictError when it was already rolled back or when any live
        value it wrote has changed since.
        """
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            application = self._select_application(
                store,
                owner_id=owner_id,
                application_id=application_id,
                scenario_instance_id=scenario_instance_id,
            )
            live = store.get_instance(instance_id=application.target_instance_id, for_update=True)
            if live is None:
                raise RollbackConflictError(
                    "ROLLBACK_TARGET_INSTANCE_MISSING",
                    application_id=application.application_id,
                    instance_id=application.target_instance_id,
                )
            self._verify_unchanged(store, application=application, live=live)
            now = utc_now()

            if application.operation_type == "create":
                for change in application.funding_changes:
                    store.delete_instance_funding(funding_id=change.funding_id)
                store.delete_instance(instance_id=live.instance_id)
            else:
                for change in application.field_changes:
                    if change.existed_before:
                        live.fields[change.field] = deepcopy(change.before)
                    else:
                        live.fields.pop(change.field, None)
                if application.field_changes:
                    live.version += 1
                    live.updated_at = now
                    store.update_instance(live)
                for change in application.funding_changes:
                    if change.created:
                        store.delete_instance_funding(funding_id=change.funding_id)
                        continue
                    funding = store.get_instance_funding(funding_id=change.funding_id)
                    funding.amount_allocated = change.before_allocated
                    funding.amount_used = change.before_used
                    funding.updated_at = now
                    store.update_instance_funding(funding)

            for change in application.fund_changes:
                fund = store.get_fund(fund_id=change.fund_id, for_update=True)
                fund.available_amount = _fund_availability(store, fund)
                store.update_fund(fund)

            scenario_instance = store.get_scenario_instance(
                scenario_instance_id=application.scenario_instance_id, for_update=True
            )
            if scenario_instance is not None:
                before = application.scenario_instance_before
                scenario_instance.source_instance_id = before.source_instance_id
                scenario_instance.status = before.status
                scenario_instance.applied_at = before.applied_at
                scenario_instance.baseline_fields = deepcopy(before.baseline_fields)
                scenario_instance.fields.update(deepcopy(before.adopted_fields))
                scenario_instance.version += 1
                scenario_instance.updated_at = now
                store.update_scenario_instance(scenario_instance)

            application.status = "rolled_back"
            application.rolled_back_at = now
            store.update_application(application)

        logger.info(
            "scenario.rollback.completed",
            extra={
                "extra_fields": {
                    "owner_id": owner_id,
                    "application_id": application.application_id,
                    "scenario_instance_id": application.scenario_instance_id,
                }
            },
        )
        return True

    def _load_source(
        self,
        store: ScenarioStore,
        scenario_instance: ScenarioInstanceRecord,
        *,
        for_update: bool = False,
    ) -> LiveInstanceRecord:
        live = store.get_instance(
            instance_id=scenario_instance.source_instance_id, for_update=for_update
        )
        if live is None or live.owner_id != scenario_instance.owner_id:
            raise ScenarioStaleReferenceError(
                "SOURCE_INSTANCE_NOT_FOUND",
                scenario_instance_id=scenario_instance.scenario_instance_id,
                source_instance_id=scenario_instance.source_instance_id,
            )
        return live

    def _commit_fundings(
        self,
        store: ScenarioStore,
        *,
        owner_id: str,
        scenario_instance: ScenarioInstanceRecord,
        target_instance_id: str,
        now,
    ) -> tuple[list[AppliedFundingChange], list[AppliedFundChange]]:
        requested_allocated: dict[str, Decimal] = defaultdict(Decimal)
        requested_used: dict[str, Decimal] = defaultdict(Decimal)
        rows_by_fund = {}
        for row in store.list_scenario_fundings(
            scenario_instance_id=scenario_instance.scenario_instance_id
        ):
            requested_allocated[row.fund_id] += row.amount_allocated
            requested_used[row.fund_id] += row.amount_used
            rows_by_fund.setdefault(row.fund_id, row)

        live_rows = {
            row.fund_id: row for row in store.list_instance_fundings(instance_id=target_instance_id)
        }
        funding_changes: list[AppliedFundingChange] = []
        funds: dict[str, FundRecord] = {}
        for fund_id in sorted(rows_by_fund):
            allocated = requested_allocated[fund_id]
            used = requested_used[fund_id]
            validate_allocation(amount_allocated=allocated, amount_used=used)
            fund = load_fund(store, owner_id=owner_id, fund_id=fund_id, for_update=True)
            validate_fund_type(fund, rows_by_fund[fund_id].fund_type)
            existing = live_rows.get(fund_id)
            if (
                existing is not None
                and existing.amount_allocated == allocated
                and existing.amount_used == used
            ):
                continue

            others = sum(
                (
                    row.amount_allocated
                    for row in store.list_fund_allocations(fund_id=fund_id)
                    if existing is None or row.funding_id != existing.funding_id
                ),
                Decimal("0"),
            )
            if others + allocated > fund.total_amount:
                logger.warning(
                    "scenario.apply.insufficient_funds",
                    extra={
                        "extra_fields": {
                            "owner_id": owner_id,
                            "scenario_instance_id": scenario_instance.scenario_instance_id,
                            "fund_id": fund_id,
                        }
                    },
                )
                raise InsufficientFundsError(
                    "INSUFFICIENT_FUNDS",
                    fund_id=fund_id,
                    requested=allocated,
                    available=fund.total_amount - others,
                    total=fund.total_amount,
                )

            if existing is None:
                funding = InstanceFundingRecord(
                    funding_id=new_id("if"),
                    owner_id=owner_id,
                    instance_id=target_instance_id,
                    fund_id=fund_id,
                    fund_type=fund.fund_type,
                    amount_allocated=allocated,
                    amount_used=used,
                    notes=rows_by_fund[fund_id].notes,
                    allocation_date=now,
                    updated_at=now,
                )
                store.create_instance_funding(funding)
                funding_changes.append(
                    AppliedFundingChange(
                        funding_id=funding.funding_id,
                        fund_id=fund_id,
                        created=True,
                        after_allocated=allocated,
                        after_used=used,
                    )
                )
            else:
                funding_changes.append(
                    AppliedFundingChange(
                        funding_id=existing.funding_id,
                        fund_id=fund_id,
                        created=False,
                        before_allocated=existing.amount_allocated,
                        before_used=existing.amount_used,
                        after_allocated=allocated,
                        after_used=used,
                    )
                )
                existing.amount_allocated = allocated
                existing.amount_used = used
                existing.updated_at = now
                store.update_instance_funding(existing)
            funds.setdefault(fund_id, fund)

        fund_changes: list[AppliedFundChange] = []
        for fund_id, fund in sorted(funds.items()):
            after_available = _fund_availability(store, fund)
            fund_changes.append(
                AppliedFundChange(
                    fund_id=fund_id,
                    before_available=fund.available_amount,
                    after_available=after_available,
                )
            )
            fund.available_amount = after_available
            store.update_fund(fund)
        return funding_changes, fund_changes

    def _select_application(
        self,
        store: ScenarioStore,
        *,
        owner_id: str,
        application_id: Optional[str],
        scenario_instance_id: Optional[str],
    ) -> ScenarioFundingApplicationRecord:
        if application_id is not None:
            application = load_application(
                store, owner_id=owner_id, application_id=application_id
            )
            if application.status != "applied":
                raise RollbackConflictError(
                    "APPLICATION_ALREADY_ROLLED_BACK", application_id=application_id
                )
            return application
        rows = store.list_applications(owner_id=owner_id, scenario_instance_id=scenario_instance_id)
        if not rows:
            raise ScenarioNotFoundError(
                "FUNDING_APPLICATION_NOT_FOUND", scenario_instance_id=scenario_instance_id
            )
        if rows[0].status != "applied":
            raise RollbackConflictError(
                "APPLICATION_ALREADY_ROLLED_BACK", application_id=rows[0].application_id
            )
        return rows[0]

    def _verify_unchanged(
        self,
        store: ScenarioStore,
        *,
        application: ScenarioFundingApplicationRecord,
        live: LiveInstanceRecord,
    ) -> None:
        for change in application.field_changes:
            current = live.fields.get(change.field, _MISSING)
            if current is _MISSING or current != change.after:
                raise RollbackConflictError(
                    "LIVE_FIELD_CHANGED_SINCE_APPLY",
                    application_id=application.application_id,
                    field=change.field,
                    expected=change.after,
                    actual=None if current is _MISSING else current,
                )
        for change in application.funding_changes:
            funding = store.get_instance_funding(funding_id=change.funding_id)
            if (
                funding is None
                or funding.amount_allocated != change.after_allocated
                or funding.amount_used != change.after_used
            ):
                raise RollbackConflictError(
                    "LIVE_FUNDING_CHANGED_SINCE_APPLY",
                    application_id=application.application_id,
                    funding_id=change.funding_id,
                )
        if application.operation_type == "create":
            recorded = {change.funding_id for change in application.funding_changes}
            for funding in store.list_instance_fundings(instance_id=live.instance_id):
                if funding.funding_id not in recorded:
                    raise RollbackConflictError(
                        "LIVE_FUNDING_ADDED_SINCE_APPLY",
                        application_id=application.application_id,
                        funding_id=funding.funding_id,
                    )
        for change in application.fund_changes:
            if store.get_fund(fund_id=change.fund_id, for_update=True) is None:
                raise RollbackConflictError(
                    "FUND_MISSING",
                    application_id=application.application_id,
                    fund_id=change.fund_id,
                )


def _commit_fields(
    store: ScenarioStore,
    *,
    live: LiveInstanceRecord,
    scenario_instance: ScenarioInstanceRecord,
    writes: list[str],
    now,
) -> list[AppliedFieldChange]:
    incoming = normalize_fields({key: scenario_instance.fields[key] for key in writes})
    changes: list[AppliedFieldChange] = []
    for key in writes:
        before = live.fields.get(key, _MISSING)
        changes.append(
            AppliedFieldChange(
                field=key,
                existed_before=before is not _MISSING,
                before=None if before is _MISSING else deepcopy(before),
                after=deepcopy(incoming[key]),
            )
        )
        live.fields[key] = incoming[key]
    if changes:
        live.version += 1
        live.updated_at = now
        store.update_instance(live)
    return changes


def _fund_availability(store: ScenarioStore, fund: FundRecord) -> Decimal:
    allocated = sum(
        (row.amount_allocated for row in store.list_fund_allocations(fund_id=fund.fund_id)),
        Decimal("0"),
    )
    return fund.total_amount - allocated
