#!/usr/bin/env python3
"""
Follow-up CLI Tool

Operator commands for the discharge follow-up core: stats, listings,
business-hours previews, cancellation and slug previews.

Usage:
    python tools/followup_cli.py stats --clinic-id <clinic-id>
    python tools/followup_cli.py list --clinic-id <clinic-id> --status queued
    python tools/followup_cli.py next-slot --from 2025-01-18T10:00:00+00:00 --timezone America/New_York
    python tools/followup_cli.py cancel <action-id>
    python tools/followup_cli.py slug "Happy Paws Clinic"
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import click
from dotenv import load_dotenv
from tabulate import tabulate

from identity.slugs import SlugAllocator, slugify
from scheduling.business_hours import BusinessHoursScheduler, WindowConfig
from scheduling.lifecycle import CallLifecycleTracker
from scheduling.models import ActionStatus, ActionType, ScheduledAction
from storage.base import Store
from storage.errors import StoreError, ValidationError
from followup.errors import DispatchError, InvalidTransitionError
from utils.time_utils import now_utc, parse_iso_to_utc, to_local


class FollowupManager:
    """Wraps the store-backed components used by the CLI"""

    def __init__(self, store: Optional[Store] = None, orchestrator=None):
        if store is None:
            from storage.redis_store import create_redis_store
            store = create_redis_store()
        self.store = store
        self.tracker = CallLifecycleTracker(store)
        self.scheduler = BusinessHoursScheduler()
        self._orchestrator = orchestrator

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from followup.orchestrator import create_orchestrator
            self._orchestrator = create_orchestrator(self.store)
        return self._orchestrator

    def get_stats(self, clinic_id: Optional[str], owner_ids: List[str],
                  action_type: Optional[str] = None) -> Dict[str, int]:
        parsed_type = ActionType.from_string(action_type) if action_type else None
        return self.tracker.get_stats(clinic_id, owner_ids, parsed_type)

    def list_actions(self, clinic_id: Optional[str], owner_ids: List[str], status: Optional[str],
                     limit: int) -> List[ScheduledAction]:
        parsed_status = ActionStatus(status) if status else None
        return self.tracker.list_actions(clinic_id, owner_ids, status=parsed_status, limit=limit)

    def next_slot(self, from_instant: datetime, timezone: str, config: WindowConfig) -> datetime:
        return self.scheduler.next_allowed_instant(from_instant, timezone, config)

    def cancel(self, action_id: str, reason: str) -> ScheduledAction:
        return self.orchestrator.cancel_followup(action_id, reason)

    def preview_slug(self, name: str) -> Dict[str, Any]:
        return {"base": slugify(name), "allocated": SlugAllocator(self.store).allocate(name)}


def _action_rows(actions: List[ScheduledAction]) -> List[List[Any]]:
    rows = []
    for action in actions:
        timezone = action.metadata.get("timezone")
        local_time = to_local(action.scheduled_for, timezone).strftime('%Y-%m-%d %H:%M %Z') if timezone else "-"
        rows.append([
            action.id[:12] + "...",
            action.action_type.value,
            action.status.value,
            action.scheduled_for.strftime('%Y-%m-%d %H:%M UTC'),
            local_time,
            action.recipient,
            action.metadata.retry_count,
        ])
    return rows


@click.group()
@click.pass_context
def cli(ctx):
    """Discharge Follow-up Management CLI"""
    load_dotenv()
    from config.settings import configure_logging
    configure_logging()
    ctx.ensure_object(dict)
    if 'manager' not in ctx.obj:
        ctx.obj['manager'] = FollowupManager()


@cli.command()
@click.option('--clinic-id', help="Tenant (clinic) id")
@click.option('--owner-id', 'owner_ids', multiple=True, help="Legacy owner id (repeatable)")
@click.option('--action-type', type=click.Choice(['call', 'email']), help="Only count one channel")
@click.pass_context
def stats(ctx, clinic_id, owner_ids, action_type):
    """Show action counts per status"""
    manager = ctx.obj['manager']

    counts = manager.get_stats(clinic_id, list(owner_ids), action_type)
    total = sum(counts.values())

    click.echo("📊 Follow-up Statistics")
    click.echo(tabulate([[status, count] for status, count in counts.items()],
                        headers=["Status", "Count"], tablefmt="simple"))
    click.echo(f"\nTotal: {total}")


@cli.command(name='list')
@click.option('--clinic-id', help="Tenant (clinic) id")
@click.option('--owner-id', 'owner_ids', multiple=True, help="Legacy owner id (repeatable)")
@click.option('--status', type=click.Choice([status.value for status in ActionStatus]), help="Filter by status")
@click.option('--limit', default=50, help="Maximum number of actions to show")
@click.pass_context
def list_actions(ctx, clinic_id, owner_ids, status, limit):
    """List scheduled actions ordered by time"""
    manager = ctx.obj['manager']

    actions = manager.list_actions(clinic_id, list(owner_ids), status, limit)
    if not actions:
        click.echo("No actions found.")
        return

    click.echo(tabulate(
        _action_rows(actions),
        headers=["ID", "Type", "Status", "Scheduled (UTC)", "Local", "Recipient", "Retries"],
        tablefmt="simple",
    ))


@cli.command(name='next-slot')
@click.option('--from', 'from_iso', help="Start instant (ISO 8601); defaults to now")
@click.option('--timezone', required=True, help="IANA timezone, e.g. America/New_York")
@click.option('--start-hour', type=int, default=None, help="Business day start hour")
@click.option('--end-hour', type=int, default=None, help="Business day end hour")
@click.option('--include-weekends', is_flag=True, help="Allow Saturday and Sunday")
@click.pass_context
def next_slot(ctx, from_iso, timezone, start_hour, end_hour, include_weekends):
    """Show the next instant inside business hours"""
    manager = ctx.obj['manager']
    defaults = WindowConfig.from_settings()

    try:
        config = WindowConfig(
            start_hour=defaults.start_hour if start_hour is None else start_hour,
            end_hour=defaults.end_hour if end_hour is None else end_hour,
            exclude_weekends=defaults.exclude_weekends and not include_weekends,
        )
        from_instant = parse_iso_to_utc(from_iso) if from_iso else now_utc()
        slot = manager.next_slot(from_instant, timezone, config)
    except ValidationError as e:
        raise click.BadParameter(str(e))

    click.echo(f"UTC:   {slot.isoformat()}")
    click.echo(f"Local: {to_local(slot, timezone).strftime('%A %Y-%m-%d %H:%M %Z')}")


@cli.command()
@click.argument('action_id')
@click.option('--reason', default="cancelled by operator", help="Reason stored on the action")
@click.pass_context
def cancel(ctx, action_id, reason):
    """Cancel a scheduled action"""
    manager = ctx.obj['manager']

    try:
        action = manager.cancel(action_id, reason)
    except (ValidationError, InvalidTransitionError, DispatchError, StoreError) as e:
        click.echo(f"❌ Could not cancel {action_id}: {e}")
        ctx.exit(1)

    click.echo(f"✅ Action {action.id} is {action.status.value}")


@cli.command()
@click.argument('name')
@click.pass_context
def slug(ctx, name):
    """Preview the slug a clinic name would get"""
    manager = ctx.obj['manager']

    try:
        result = manager.preview_slug(name)
    except ValidationError as e:
        raise click.BadParameter(str(e))

    click.echo(f"Base slug:      {result['base']}")
    click.echo(f"Available slug: {result['allocated']}")


if __name__ == '__main__':
    cli()
