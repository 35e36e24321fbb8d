import sys

from .core.config import get_settings, validate_settings
from .core.errors import MaintenanceError
from .core.logging import configure_structlog, get_logger
from .services.maintenance_runner import MaintenanceRunner


def main() -> int:
    try:
        settings = get_settings()
        validate_settings(settings)
    except ValueError as exc:
        # Logging config may itself be the invalid part
        configure_structlog()
        get_logger(__name__).error("config.invalid", error=str(exc))
        return 1

    configure_structlog(settings.log_level, json=settings.log_json)
    logger = get_logger(__name__)

    database_url = settings.resolved_database_url()
    logger.info(
        "maintenance.start",
        env=settings.env,
        database_url=database_url,
        dry_run=settings.dry_run,
        clones_retention_months=settings.clones_retention_months,
    )

    runner = MaintenanceRunner(
        database_url,
        dry_run=settings.dry_run,
        retention_months=settings.clones_retention_months,
        logger=logger,
    )
    try:
        runner.run()
    except MaintenanceError:
        # Already logged by the runner with the partial totals
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
