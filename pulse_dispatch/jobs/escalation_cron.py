"""
Escalation Cron Job: advances overdue workflow executions.

Runs on an external fixed schedule (cron, Kubernetes CronJob or similar).
Overlapping runs are safe: each execution moves up at most one rung per
deadline no matter how many sweeps see it.

Typical cron schedule: */5 * * * * (every five minutes)
"""

import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..core.config import Settings, get_settings
from ..services.workflow_engine import WorkflowEngine


logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================

ALERT_SOURCE = "camerpulse-escalation-cron"
ALERT_TIMEOUT_SECONDS = 10
MAX_LISTED_EXECUTIONS = 10

SEVERITY_COLORS = {
    "critical": "#dc2626",
    "warning": "#f59e0b",
}


@dataclass
class SweepAlert:
    """An operator alert about one escalation sweep."""
    title: str
    message: str
    severity: str = "error"
    started_at: str | None = None
    escalated: int = 0
    skipped: int = 0
    failed_execution_ids: list[str] = field(default_factory=list)
    error: str | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "escalated": self.escalated,
            "skipped": self.skipped,
            "failed": len(self.failed_execution_ids),
            "failed_execution_ids": self.failed_execution_ids,
            "error": self.error,
        }

    def slack_payload(self) -> dict[str, Any]:
        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": self.title}},
            {"type": "section", "text": {"type": "mrkdwn", "text": self.message}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Escalated*\n{self.escalated}"},
                    {"type": "mrkdwn", "text": f"*Skipped*\n{self.skipped}"},
                    {"type": "mrkdwn", "text": f"*Failed*\n{len(self.failed_execution_ids)}"},
                ],
            },
        ]

        if self.failed_execution_ids:
            listed = self.failed_execution_ids[:MAX_LISTED_EXECUTIONS]
            lines = [f"• `{execution_id}`" for execution_id in listed]
            hidden = len(self.failed_execution_ids) - len(listed)
            if hidden > 0:
                lines.append(f"and {hidden} more")
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": "*Failed executions*\n" + "\n".join(lines)},
            })

        if self.error:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"```{self.error[-500:]}```"},
            })

        blocks.append({
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": (
                    f"Severity: *{self.severity.upper()}* | "
                    f"Sweep started: {self.started_at or 'unknown'}"
                ),
            }],
        })

        color = SEVERITY_COLORS.get(self.severity, SEVERITY_COLORS["warning"])
        return {"attachments": [{"color": color, "blocks": blocks}]}

    def webhook_payload(self) -> dict[str, Any]:
        """Generic JSON body (PagerDuty, Opsgenie, custom receivers)."""
        return {
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": ALERT_SOURCE,
            "details": self.summary(),
        }


async def send_alert(alert: SweepAlert, settings: Settings | None = None) -> None:
    """
    Report a sweep problem to operators.

    Always logged; also posted to the Slack and generic webhooks that are configured.
    Delivery failures are logged and never fail the job.
    """
    settings = settings or get_settings()

    log_message = f"[CRON ALERT] {alert.title}: {alert.message} | {alert.summary()}"
    if alert.severity == "critical":
        logger.critical(log_message)
    elif alert.severity == "warning":
        logger.warning(log_message)
    else:
        logger.error(log_message)

    targets = [
        (url, build_payload)
        for url, build_payload in (
            (settings.slack_alerts_webhook_url, alert.slack_payload),
            (settings.alert_webhook_url, alert.webhook_payload),
        )
        if url
    ]
    if not targets:
        return

    async with httpx.AsyncClient(timeout=ALERT_TIMEOUT_SECONDS) as client:
        for url, build_payload in targets:
            try:
                response = await client.post(url, json=build_payload())
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Failed to deliver alert '{alert.title}': {e}")


# =============================================================================
# JOB
# =============================================================================


def _async_database_url(database_url: str) -> str:
    return database_url.replace("postgresql://", "postgresql+asyncpg://")


async def run_escalation_job(
    database_url: str,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """
    Run one escalation sweep in its own transaction.

    Args:
        database_url: Database connection string
        settings: Overrides the environment settings (timeouts, alert webhooks)

    Returns:
        Job result summary
    """
    settings = settings or get_settings()
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting escalation job at {start_time.isoformat()}")

    engine = create_async_engine(_async_database_url(database_url))
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "escalated": 0,
        "skipped": 0,
        "failed_execution_ids": [],
        "errors": [],
    }

    try:
        async with session_factory() as session:
            async with session.begin():
                sweep = await WorkflowEngine(session, settings).process_escalations()
                results["escalated"] = sweep.escalated
                results["skipped"] = sweep.skipped
                results["failed_execution_ids"] = [str(i) for i in sweep.failed_execution_ids]
                results["errors"].extend(sweep.errors)

    except Exception as e:
        error_msg = f"Escalation job failed: {e}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            SweepAlert(
                title="Escalation Cron Job Failed",
                message=(
                    "The workflow escalation sweep crashed; "
                    "no escalations from this run were committed."
                ),
                severity="critical",
                started_at=results["started_at"],
                error=f"{e}\n{traceback.format_exc()}",
            ),
            settings=settings,
        )
        raise

    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Escalation job completed in {results['duration_seconds']:.2f}s: "
        f"{results['escalated']} escalated, {results['skipped']} skipped"
    )

    if results["errors"]:
        await send_alert(
            SweepAlert(
                title="Escalation Job Completed with Warnings",
                message=(
                    f"{len(results['failed_execution_ids'])} executions could not be "
                    "escalated and will be retried next run."
                ),
                severity="warning",
                started_at=results["started_at"],
                escalated=results["escalated"],
                skipped=results["skipped"],
                failed_execution_ids=results["failed_execution_ids"],
                error="\n".join(results["errors"][:5]),
            ),
            settings=settings,
        )

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the escalation job."""
    import argparse
    import os

    parser = argparse.ArgumentParser(description="Run the workflow escalation sweep")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string",
    )

    args = parser.parse_args()

    if not args.database_url:
        print("Error: DATABASE_URL is required")
        raise SystemExit(1)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_escalation_job(database_url=args.database_url))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
