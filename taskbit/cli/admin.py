import asyncio
import click
from taskbit.core.exceptions import TaskBitError
from taskbit.core.firebase_service import get_firebase_service, get_firestore_client, init_firebase
from taskbit.models.subscription import FREE_PLAN
from taskbit.services.billing_service import BillingService
from taskbit.services.invoice_service import InvoiceService
from taskbit.services.migration_service import MigrationService
import logging

logger = logging.getLogger(__name__)


async def _all_user_ids(db):
    return [doc.id async for doc in db.collection('users').stream()]


@click.group()
def cli():
    """TaskBit admin commands"""
    init_firebase()


@cli.command('migrate-time-entries')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
@click.option('--all', 'all_users', is_flag=True, help='Migrate every user')
def migrate_time_entries(user_id, all_users):
    """Move legacy time entries under their projects"""
    if not user_id and not all_users:
        click.echo("❌ Please provide --id or --all", err=True)
        return

    async def run():
        db = get_firestore_client()
        service = MigrationService(db=db)
        user_ids = await _all_user_ids(db) if all_users else [user_id]
        for uid in user_ids:
            result = await service.migrate_time_entries(uid)
            if result['migrated'] or result['skipped']:
                click.echo(f"✓ {uid}: migrated {result['migrated']}, skipped {result['skipped']}")
        click.echo(f"✓ Checked {len(user_ids)} users")

    asyncio.run(run())


@cli.command('sync-products')
def sync_products():
    """Mirror active Stripe products and prices into Firestore"""
    async def run():
        return await BillingService(db=get_firestore_client()).sync_products()

    try:
        count = asyncio.run(run())
    except TaskBitError as e:
        click.echo(f"❌ {e.message}", err=True)
        return
    click.echo(f"✓ Synced {count} products")


@cli.command('mark-overdue')
@click.option('--id', 'user_id', required=False, help='Only this user (Firebase UID)')
def mark_overdue(user_id):
    """Flag sent invoices past their due date as overdue"""
    async def run():
        db = get_firestore_client()
        service = InvoiceService(db=db)
        user_ids = [user_id] if user_id else await _all_user_ids(db)
        total = 0
        for uid in user_ids:
            total += await service.mark_overdue_invoices(uid)
        return total

    total = asyncio.run(run())
    click.echo(f"✓ Marked {total} invoices overdue")


@cli.command('set-plan')
@click.option('--id', 'user_id', required=True, help='User id (Firebase UID)')
@click.option('--plan', required=True, help=f"Plan name, '{FREE_PLAN}' removes the claim")
def set_plan(user_id, plan):
    """Manually set a user's plan and plan claim"""
    async def run():
        db = get_firestore_client()
        user = await db.collection('users').document(user_id).get()
        if not user.exists:
            return False
        await db.collection('users').document(user_id).set({'plan': plan}, merge=True)
        return True

    if not asyncio.run(run()):
        click.echo(f"❌ User not found: {user_id}", err=True)
        return

    firebase = get_firebase_service()
    if plan == FREE_PLAN:
        firebase.revoke_plan_claim(user_id)
    else:
        firebase.set_plan_claim(user_id, plan)
    click.echo(f"✓ Set plan {plan} for {user_id}")


if __name__ == '__main__':
    cli()
