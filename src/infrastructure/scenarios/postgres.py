import json
from contextlib import closing, contextmanager
from datetime import datetime
from decimal import Decimal
from importlib.util import find_spec
from typing import Any, Iterator, Optional

from src.core.scenarios.models import (
    AppliedFieldChange,
    AppliedFundChange,
    AppliedFundingChange,
    FundRecord,
    InstanceFundingRecord,
    LiveInstanceRecord,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceFundingRecord,
    ScenarioInstanceRecord,
    ScenarioInstanceSnapshot,
    ScenarioRecord,
)
from src.core.scenarios.repository import ScenarioStore
from src.infrastructure.postgres_migrations import apply_postgres_migrations


class PostgresScenarioRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("SCENARIO_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("SCENARIO_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    @contextmanager
    def atomic(self) -> Iterator[ScenarioStore]:
        with closing(self._connect()) as connection:
            try:
                yield PostgresScenarioSession(connection)
            except Exception:
                connection.rollback()
                raise
            connection.commit()

    def create_scenario(self, scenario: ScenarioRecord) -> None:
        with self.atomic() as store:
            store.create_scenario(scenario)

    def update_scenario(self, scenario: ScenarioRecord) -> None:
        with self.atomic() as store:
            store.update_scenario(scenario)

    def get_scenario(self, *, scenario_id: str) -> Optional[ScenarioRecord]:
        with self.atomic() as store:
            return store.get_scenario(scenario_id=scenario_id)

    def list_scenarios(self, *, owner_id: str) -> list[ScenarioRecord]:
        with self.atomic() as store:
            return store.list_scenarios(owner_id=owner_id)

    def delete_scenario(self, *, scenario_id: str) -> None:
        with self.atomic() as store:
            store.delete_scenario(scenario_id=scenario_id)

    def create_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        with self.atomic() as store:
            store.create_scenario_instance(scenario_instance)

    def update_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        with self.atomic() as store:
            store.update_scenario_instance(scenario_instance)

    def get_scenario_instance(
        self, *, scenario_instance_id: str, for_update: bool = False
    ) -> Optional[ScenarioInstanceRecord]:
        with self.atomic() as store:
            return store.get_scenario_instance(scenario_instance_id=scenario_instance_id)

    def list_scenario_instances(self, *, scenario_id: str) -> list[ScenarioInstanceRecord]:
        with self.atomic() as store:
            return store.list_scenario_instances(scenario_id=scenario_id)

    def delete_scenario_instance(self, *, scenario_instance_id: str) -> None:
        with self.atomic() as store:
            store.delete_scenario_instance(scenario_instance_id=scenario_instance_id)

    def create_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        with self.atomic() as store:
            store.create_scenario_funding(funding)

    def update_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        with self.atomic() as store:
            store.update_scenario_funding(funding)

    def get_scenario_funding(
        self, *, scenario_funding_id: str
    ) -> Optional[ScenarioInstanceFundingRecord]:
        with self.atomic() as store:
            return store.get_scenario_funding(scenario_funding_id=scenario_funding_id)

    def list_scenario_fundings(
        self, *, scenario_instance_id: str
    ) -> list[ScenarioInstanceFundingRecord]:
        with self.atomic() as store:
            return store.list_scenario_fundings(scenario_instance_id=scenario_instance_id)

    def delete_scenario_funding(self, *, scenario_funding_id: str) -> None:
        with self.atomic() as store:
            store.delete_scenario_funding(scenario_funding_id=scenario_funding_id)

    def create_instance(self, instance: LiveInstanceRecord) -> None:
        with self.atomic() as store:
            store.create_instance(instance)

    def update_instance(self, instance: LiveInstanceRecord) -> None:
        with self.atomic() as store:
            store.update_instance(instance)

    def get_instance(
        self, *, instance_id: str, for_update: bool = False
    ) -> Optional[LiveInstanceRecord]:
        with self.atomic() as store:
            return store.get_instance(instance_id=instance_id)

    def delete_instance(self, *, instance_id: str) -> None:
        with self.atomic() as store:
            store.delete_instance(instance_id=instance_id)

    def create_instance_funding(self, funding: InstanceFundingRecord) -> None:
        with self.atomic() as store:
            store.create_instance_funding(funding)

    def update_instance_funding(self, funding: InstanceFundingRecord) -> None:
        with self.atomic() as store:
            store.update_instance_funding(funding)

    def get_instance_funding(self, *, funding_id: str) -> Optional[InstanceFundingRecord]:
        with self.atomic() as store:
            return store.get_instance_funding(funding_id=funding_id)

    def list_instance_fundings(self, *, instance_id: str) -> list[InstanceFundingRecord]:
        with self.atomic() as store:
            return store.list_instance_fundings(instance_id=instance_id)

    def list_fund_allocations(self, *, fund_id: str) -> list[InstanceFundingRecord]:
        with self.atomic() as store:
            return store.list_fund_allocations(fund_id=fund_id)

    def delete_instance_funding(self, *, funding_id: str) -> None:
        with self.atomic() as store:
            store.delete_instance_funding(funding_id=funding_id)

    def create_fund(self, fund: FundRecord) -> None:
        with self.atomic() as store:
            store.create_fund(fund)

    def update_fund(self, fund: FundRecord) -> None:
        with self.atomic() as store:
            store.update_fund(fund)

    def get_fund(self, *, fund_id: str, for_update: bool = False) -> Optional[FundRecord]:
        with self.atomic() as store:
            return store.get_fund(fund_id=fund_id)

    def create_application(self, application: ScenarioFundingApplicationRecord) -> None:
        with self.atomic() as store:
            store.create_application(application)

    def update_application(self, application: ScenarioFundingApplicationRecord) -> None:
        with self.atomic() as store:
            store.update_application(application)

    def get_application(
        self, *, application_id: str
    ) -> Optional[ScenarioFundingApplicationRecord]:
        with self.atomic() as store:
            return store.get_application(application_id=application_id)

    def list_applications(
        self, *, owner_id: str, scenario_instance_id: Optional[str] = None
    ) -> list[ScenarioFundingApplicationRecord]:
        with self.atomic() as store:
            return store.list_applications(
                owner_id=owner_id, scenario_instance_id=scenario_instance_id
            )

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="scenarios")


class PostgresScenarioSession:
    """Store bound to one open connection; the caller owns commit and rollback."""

    def __init__(self, connection: Any) -> None:
        self._connection = connection

    def create_scenario(self, scenario: ScenarioRecord) -> None:
        self._upsert_scenario(scenario)

    def update_scenario(self, scenario: ScenarioRecord) -> None:
        self._upsert_scenario(scenario)

    def get_scenario(self, *, scenario_id: str) -> Optional[ScenarioRecord]:
        query = f"""
            SELECT {_SCENARIO_COLUMNS}
            FROM scenario_records
            WHERE scenario_id = %s
        """
        row = self._connection.execute(query, (scenario_id,)).fetchone()
        return _to_scenario(row)

    def list_scenarios(self, *, owner_id: str) -> list[ScenarioRecord]:
        query = f"""
            SELECT {_SCENARIO_COLUMNS}
            FROM scenario_records
            WHERE owner_id = %s
            ORDER BY updated_at DESC, scenario_id DESC
        """
        rows = self._connection.execute(query, (owner_id,)).fetchall()
        return [_to_scenario(row) for row in rows]

    def delete_scenario(self, *, scenario_id: str) -> None:
        self._connection.execute(
            "DELETE FROM scenario_records WHERE scenario_id = %s", (scenario_id,)
        )

    def create_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        self._upsert_scenario_instance(scenario_instance)

    def update_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        self._upsert_scenario_instance(scenario_instance)

    def get_scenario_instance(
        self, *, scenario_instance_id: str, for_update: bool = False
    ) -> Optional[ScenarioInstanceRecord]:
        query = f"""
            SELECT {_SCENARIO_INSTANCE_COLUMNS}
            FROM scenario_instances
            WHERE scenario_instance_id = %s
            {_lock_clause(for_update)}
        """
        row = self._connection.execute(query, (scenario_instance_id,)).fetchone()
        return _to_scenario_instance(row)

    def list_scenario_instances(self, *, scenario_id: str) -> list[ScenarioInstanceRecord]:
        query = f"""
            SELECT {_SCENARIO_INSTANCE_COLUMNS}
            FROM scenario_instances
            WHERE scenario_id = %s
            ORDER BY created_at ASC, scenario_instance_id ASC
        """
        rows = self._connection.execute(query, (scenario_id,)).fetchall()
        return [_to_scenario_instance(row) for row in rows]

    def delete_scenario_instance(self, *, scenario_instance_id: str) -> None:
        self._connection.execute(
            "DELETE FROM scenario_instances WHERE scenario_instance_id = %s",
            (scenario_instance_id,),
        )

    def create_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        self._upsert_scenario_funding(funding)

    def update_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        self._upsert_scenario_funding(funding)

    def get_scenario_funding(
        self, *, scenario_funding_id: str
    ) -> Optional[ScenarioInstanceFundingRecord]:
        query = f"""
            SELECT {_SCENARIO_FUNDING_COLUMNS}
            FROM scenario_instance_fundings
            WHERE scenario_funding_id = %s
        """
        row = self._connection.execute(query, (scenario_funding_id,)).fetchone()
        return _to_scenario_funding(row)

    def list_scenario_fundings(
        self, *, scenario_instance_id: str
    ) -> list[ScenarioInstanceFundingRecord]:
        query = f"""
            SELECT {_SCENARIO_FUNDING_COLUMNS}
            FROM scenario_instance_fundings
            WHERE scenario_instance_id = %s
            ORDER BY created_at ASC, scenario_funding_id ASC
        """
        rows = self._connection.execute(query, (scenario_instance_id,)).fetchall()
        return [_to_scenario_funding(row) for row in rows]

    def delete_scenario_funding(self, *, scenario_funding_id: str) -> None:
        self._connection.execute(
            "DELETE FROM scenario_instance_fundings WHERE scenario_funding_id = %s",
            (scenario_funding_id,),
        )

    def create_instance(self, instance: LiveInstanceRecord) -> None:
        self._upsert_instance(instance)

    def update_instance(self, instance: LiveInstanceRecord) -> None:
        self._upsert_instance(instance)

    def get_instance(
        self, *, instance_id: str, for_update: bool = False
    ) -> Optional[LiveInstanceRecord]:
        query = f"""
            SELECT
                instance_id,
                owner_id,
                name,
                fields_json,
                version,
                created_at,
                updated_at
            FROM live_instances
            WHERE instance_id = %s
            {_lock_clause(for_update)}
        """
        row = self._connection.execute(query, (instance_id,)).fetchone()
        if row is None:
            return None
        return LiveInstanceRecord(
            instance_id=row["instance_id"],
            owner_id=row["owner_id"],
            name=row["name"],
            fields=json.loads(row["fields_json"]),
            version=int(row["version"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def delete_instance(self, *, instance_id: str) -> None:
        self._connection.execute(
            "DELETE FROM live_instances WHERE instance_id = %s", (instance_id,)
        )

    def create_instance_funding(self, funding: InstanceFundingRecord) -> None:
        self._upsert_instance_funding(funding)

    def update_instance_funding(self, funding: InstanceFundingRecord) -> None:
        self._upsert_instance_funding(funding)

    def get_instance_funding(self, *, funding_id: str) -> Optional[InstanceFundingRecord]:
        query = f"""
            SELECT {_INSTANCE_FUNDING_COLUMNS}
            FROM instance_fundings
            WHERE funding_id = %s
        """
        row = self._connection.execute(query, (funding_id,)).fetchone()
        return _to_instance_funding(row)

    def list_instance_fundings(self, *, instance_id: str) -> list[InstanceFundingRecord]:
        query = f"""
            SELECT {_INSTANCE_FUNDING_COLUMNS}
            FROM instance_fundings
            WHERE instance_id = %s
            ORDER BY allocation_date ASC, funding_id ASC
        """
        rows = self._connection.execute(query, (instance_id,)).fetchall()
        return [_to_instance_funding(row) for row in rows]

    def list_fund_allocations(self, *, fund_id: str) -> list[InstanceFundingRecord]:
        query = f"""
            SELECT {_INSTANCE_FUNDING_COLUMNS}
            FROM instance_fundings
            WHERE fund_id = %s
            ORDER BY allocation_date ASC, funding_id ASC
        """
        rows = self._connection.execute(query, (fund_id,)).fetchall()
        return [_to_instance_funding(row) for row in rows]

    def delete_instance_funding(self, *, funding_id: str) -> None:
        self._connection.execute(
            "DELETE FROM instance_fundings WHERE funding_id = %s", (funding_id,)
        )

    def create_fund(self, fund: FundRecord) -> None:
        self._upsert_fund(fund)

    def update_fund(self, fund: FundRecord) -> None:
        self._upsert_fund(fund)

    def get_fund(self, *, fund_id: str, for_update: bool = False) -> Optional[FundRecord]:
        query = f"""
            SELECT
                fund_id,
                owner_id,
                fund_type,
                name,
                total_amount,
                available_amount
            FROM funds
            WHERE fund_id = %s
            {_lock_clause(for_update)}
        """
        row = self._connection.execute(query, (fund_id,)).fetchone()
        if row is None:
            return None
        return FundRecord(
            fund_id=row["fund_id"],
            owner_id=row["owner_id"],
            fund_type=row["fund_type"],
            name=row["name"],
            total_amount=_to_decimal(row["total_amount"]),
            available_amount=_to_decimal(row["available_amount"]),
        )

    def create_application(self, application: ScenarioFundingApplicationRecord) -> None:
        self._upsert_application(application)

    def update_application(self, application: ScenarioFundingApplicationRecord) -> None:
        self._upsert_application(application)

    def get_application(
        self, *, application_id: str
    ) -> Optional[ScenarioFundingApplicationRecord]:
        query = f"""
            SELECT {_APPLICATION_COLUMNS}
            FROM scenario_funding_applications
            WHERE application_id = %s
        """
        row = self._connection.execute(query, (application_id,)).fetchone()
        return _to_application(row)

    def list_applications(
        self, *, owner_id: str, scenario_instance_id: Optional[str] = None
    ) -> list[ScenarioFundingApplicationRecord]:
        where_clauses = ["owner_id = %s"]
        args: list[str] = [owner_id]
        if scenario_instance_id is not None:
            where_clauses.append("scenario_instance_id = %s")
            args.append(scenario_instance_id)
        query = f"""
            SELECT {_APPLICATION_COLUMNS}
            FROM scenario_funding_applications
            WHERE {" AND ".join(where_clauses)}
            ORDER BY applied_at DESC, application_id DESC
        """
        rows = self._connection.execute(query, tuple(args)).fetchall()
        return [_to_application(row) for row in rows]

    def _upsert_scenario(self, scenario: ScenarioRecord) -> None:
        query = """
            INSERT INTO scenario_records (
                scenario_id,
                owner_id,
                name,
                description,
                is_primary,
                status,
                tags_json,
                settings_json,
                snapshot_json,
                snapshot_version,
                created_at,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (scenario_id) DO UPDATE SET
                name=excluded.name,
                description=excluded.description,
                is_primary=excluded.is_primary,
                status=excluded.status,
                tags_json=excluded.tags_json,
                settings_json=excluded.settings_json,
                snapshot_json=excluded.snapshot_json,
                snapshot_version=excluded.snapshot_version,
                updated_at=excluded.updated_at
        """
        self._connection.execute(
            query,
            (
                scenario.scenario_id,
                scenario.owner_id,
                scenario.name,
                scenario.description,
                scenario.is_primary,
                scenario.status,
                _json_dump(scenario.tags),
                _json_dump(scenario.settings),
                _json_dump(scenario.snapshot),
                scenario.snapshot_version,
                scenario.created_at.isoformat(),
                scenario.updated_at.isoformat(),
            ),
        )

    def _upsert_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        query = """
            INSERT INTO scenario_instances (
                scenario_instance_id,
                scenario_id,
                owner_id,
                source_instance_id,
                display_name,
                fields_json,
                baseline_fields_json,
                status,
                applied_at,
                last_synced_at,
                version,
                created_at,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (scenario_instance_id) DO UPDATE SET
                source_instance_id=excluded.source_instance_id,
                display_name=excluded.display_name,
                fields_json=excluded.fields_json,
                baseline_fields_json=excluded.baseline_fields_json,
                status=excluded.status,
                applied_at=excluded.applied_at,
                last_synced_at=excluded.last_synced_at,
                version=excluded.version,
                updated_at=excluded.updated_at
        """
        self._connection.execute(
            query,
            (
                scenario_instance.scenario_instance_id,
                scenario_instance.scenario_id,
                scenario_instance.owner_id,
                scenario_instance.source_instance_id,
                scenario_instance.display_name,
                _json_dump(scenario_instance.fields),
                _json_dump(scenario_instance.baseline_fields),
                scenario_instance.status,
                _optional_iso(scenario_instance.applied_at),
                _optional_iso(scenario_instance.last_synced_at),
                scenario_instance.version,
                scenario_instance.created_at.isoformat(),
                scenario_instance.updated_at.isoformat(),
            ),
        )

    def _upsert_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        query = """
            INSERT INTO scenario_instance_fundings (
                scenario_funding_id,
                scenario_instance_id,
                owner_id,
                fund_id,
                fund_type,
                amount_allocated,
                amount_used,
                notes,
                created_at,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (scenario_funding_id) DO UPDATE SET
                amount_allocated=excluded.amount_allocated,
                amount_used=excluded.amount_used,
                notes=excluded.notes,
                updated_at=excluded.updated_at
        """
        self._connection.execute(
            query,
            (
                funding.scenario_funding_id,
                funding.scenario_instance_id,
                funding.owner_id,
                funding.fund_id,
                funding.fund_type,
                funding.amount_allocated,
                funding.amount_used,
                funding.notes,
                funding.created_at.isoformat(),
                funding.updated_at.isoformat(),
            ),
        )

    def _upsert_instance(self, instance: LiveInstanceRecord) -> None:
        query = """
            INSERT INTO live_instances (
                instance_id,
                owner_id,
                name,
                fields_json,
                version,
                created_at,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (instance_id) DO UPDATE SET
                name=excluded.name,
                fields_json=excluded.fields_json,
                version=excluded.version,
                updated_at=excluded.updated_at
        """
        self._connection.execute(
            query,
            (
                instance.instance_id,
                instance.owner_id,
                instance.name,
                _json_dump(instance.fields),
                instance.version,
                instance.created_at.isoformat(),
                instance.updated_at.isoformat(),
            ),
        )

    def _upsert_instance_funding(self, funding: InstanceFundingRecord) -> None:
        query = """
            INSERT INTO instance_fundings (
                funding_id,
                owner_id,
                instance_id,
                fund_id,
                fund_type,
                amount_allocated,
                amount_used,
                notes,
                allocation_date,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (funding_id) DO UPDATE SET
                amount_allocated=excluded.amount_allocated,
                amount_used=excluded.amount_used,
                notes=excluded.notes,
                updated_at=excluded.updated_at
        """
        self._connection.execute(
            query,
            (
                funding.funding_id,
                funding.owner_id,
                funding.instance_id,
                funding.fund_id,
                funding.fund_type,
                funding.amount_allocated,
                funding.amount_used,
                funding.notes,
                funding.allocation_date.isoformat(),
                funding.updated_at.isoformat(),
            ),
        )

    def _upsert_fund(self, fund: FundRecord) -> None:
        query = """
            INSERT INTO funds (
                fund_id,
                owner_id,
                fund_type,
                name,
                total_amount,
                available_amount
            ) VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (fund_id) DO UPDATE SET
                name=excluded.name,
                total_amount=excluded.total_amount,
                available_amount=excluded.available_amount
        """
        self._connection.execute(
            query,
            (
                fund.fund_id,
                fund.owner_id,
                fund.fund_type,
                fund.name,
                fund.total_amount,
                fund.available_amount,
            ),
        )

    def _upsert_application(self, application: ScenarioFundingApplicationRecord) -> None:
        query = """
            INSERT INTO scenario_funding_applications (
                application_id,
                owner_id,
                scenario_instance_id,
                target_instance_id,
                operation_type,
                status,
                field_changes_json,
                funding_changes_json,
                fund_changes_json,
                scenario_instance_before_json,
                applied_at,
                rolled_back_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (application_id) DO UPDATE SET
                status=excluded.status,
                rolled_back_at=excluded.rolled_back_at
        """
        self._connection.execute(
            query,
            (
                application.application_id,
                application.owner_id,
                application.scenario_instance_id,
                application.target_instance_id,
                application.operation_type,
                application.status,
                _json_dump([item.model_dump(mode="json") for item in application.field_changes]),
                _json_dump(
                    [item.model_dump(mode="json") for item in application.funding_changes]
                ),
                _json_dump([item.model_dump(mode="json") for item in application.fund_changes]),
                _json_dump(application.scenario_instance_before.model_dump(mode="json")),
                application.applied_at.isoformat(),
                _optional_iso(application.rolled_back_at),
            ),
        )


_SCENARIO_COLUMNS = """
    scenario_id,
    owner_id,
    name,
    description,
    is_primary,
    status,
    tags_json,
    settings_json,
    snapshot_json,
    snapshot_version,
    created_at,
    updated_at
"""

_SCENARIO_INSTANCE_COLUMNS = """
    scenario_instance_id,
    scenario_id,
    owner_id,
    source_instance_id,
    display_name,
    fields_json,
    baseline_fields_json,
    status,
    applied_at,
    last_synced_at,
    version,
    created_at,
    updated_at
"""

_SCENARIO_FUNDING_COLUMNS = """
    scenario_funding_id,
    scenario_instance_id,
    owner_id,
    fund_id,
    fund_type,
    amount_allocated,
    amount_used,
    notes,
    created_at,
    updated_at
"""

_INSTANCE_FUNDING_COLUMNS = """
    funding_id,
    owner_id,
    instance_id,
    fund_id,
    fund_type,
    amount_allocated,
    amount_used,
    notes,
    allocation_date,
    updated_at
"""

_APPLICATION_COLUMNS = """
    application_id,
    owner_id,
    scenario_instance_id,
    target_instance_id,
    operation_type,
    status,
    field_changes_json,
    funding_changes_json,
    fund_changes_json,
    scenario_instance_before_json,
    applied_at,
    rolled_back_at
"""


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _lock_clause(for_update: bool) -> str:
    return "FOR UPDATE" if for_update else ""


def _json_dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _to_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def _to_scenario(row) -> Optional[ScenarioRecord]:
    if row is None:
        return None
    return ScenarioRecord(
        scenario_id=row["scenario_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"],
        is_primary=bool(row["is_primary"]),
        status=row["status"],
        tags=json.loads(row["tags_json"]),
        settings=json.loads(row["settings_json"]),
        snapshot=json.loads(row["snapshot_json"]),
        snapshot_version=int(row["snapshot_version"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_scenario_instance(row) -> Optional[ScenarioInstanceRecord]:
    if row is None:
        return None
    return ScenarioInstanceRecord(
        scenario_instance_id=row["scenario_instance_id"],
        scenario_id=row["scenario_id"],
        owner_id=row["owner_id"],
        source_instance_id=row["source_instance_id"],
        display_name=row["display_name"],
        fields=json.loads(row["fields_json"]),
        baseline_fields=json.loads(row["baseline_fields_json"]),
        status=row["status"],
        applied_at=_optional_datetime(row["applied_at"]),
        last_synced_at=_optional_datetime(row["last_synced_at"]),
        version=int(row["version"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_scenario_funding(row) -> Optional[ScenarioInstanceFundingRecord]:
    if row is None:
        return None
    return ScenarioInstanceFundingRecord(
        scenario_funding_id=row["scenario_funding_id"],
        scenario_instance_id=row["scenario_instance_id"],
        owner_id=row["owner_id"],
        fund_id=row["fund_id"],
        fund_type=row["fund_type"],
        amount_allocated=_to_decimal(row["amount_allocated"]),
        amount_used=_to_decimal(row["amount_used"]),
        notes=row["notes"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_instance_funding(row) -> Optional[InstanceFundingRecord]:
    if row is None:
        return None
    return InstanceFundingRecord(
        funding_id=row["funding_id"],
        owner_id=row["owner_id"],
        instance_id=row["instance_id"],
        fund_id=row["fund_id"],
        fund_type=row["fund_type"],
        amount_allocated=_to_decimal(row["amount_allocated"]),
        amount_used=_to_decimal(row["amount_used"]),
        notes=row["notes"],
        allocation_date=datetime.fromisoformat(row["allocation_date"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_application(row) -> Optional[ScenarioFundingApplicationRecord]:
    if row is None:
        return None
    return ScenarioFundingApplicationRecord(
        application_id=row["application_id"],
        owner_id=row["owner_id"],
        scenario_instance_id=row["scenario_instance_id"],
        target_instance_id=row["target_instance_id"],
        operation_type=row["operation_type"],
        status=row["status"],
        field_changes=[
            AppliedFieldChange.model_validate(item)
            for item in json.loads(row["field_changes_json"])
        ],
        funding_changes=[
            AppliedFundingChange.model_validate(item)
            for item in json.loads(row["funding_changes_json"])
        ],
        fund_changes=[
            AppliedFundChange.model_validate(item)
            for item in json.loads(row["fund_changes_json"])
        ],
        scenario_instance_before=ScenarioInstanceSnapshot.model_validate(
            json.loads(row["scenario_instance_before_json"])
        ),
        applied_at=datetime.fromisoformat(row["applied_at"]),
        rolled_back_at=_optional_datetime(row["rolled_back_at"]),
    )
