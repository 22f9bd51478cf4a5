"""Health mapper - HealthReport -> generated `Health` binding."""

from services.health import HealthReport


def map_health(report: HealthReport, bindings, contract_version: str):
    return bindings.get("Health")(
        status="ok" if report.ok else "degraded",
        contract_version=contract_version,
        schema_current=report.schema_current,
        pending_migrations=report.pending_migrations,
        database="ok" if report.database else "unreachable",
    )
