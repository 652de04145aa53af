"""Register Prefect deployments"""
from prefect import serve
from finance_recon.config import settings
from finance_recon.flows.reconciliation import conduit_cleanup_flow, nightly_reconciliation_flow
from finance_recon.utils.logging import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

# Cleanup runs first so the nightly batch compares deduplicated ledgers
CLEANUP_CRON = "0 6 * * *"
RECONCILIATION_CRON = "30 6 * * *"


def build_deployments():
    """Deployments for every scheduled flow"""
    return [
        conduit_cleanup_flow.to_deployment(
            name="conduit-cleanup-nightly",
            cron=CLEANUP_CRON,
            parameters={"cycle": settings.default_cycle, "dry_run": False},
            tags=["finance", "cleanup"],
        ),
        nightly_reconciliation_flow.to_deployment(
            name="finance-reconciliation-nightly",
            cron=RECONCILIATION_CRON,
            parameters={"cycle": settings.default_cycle, "limit": settings.batch_limit},
            tags=["finance", "reconciliation"],
        ),
    ]


def register_deployments():
    """Serve all Prefect deployments"""
    deployments = build_deployments()
    logger.info("Serving Prefect deployments", count=len(deployments),
                prefect_api_url=settings.prefect_api_url)
    serve(*deployments)

if __name__ == "__main__":
    register_deployments()
