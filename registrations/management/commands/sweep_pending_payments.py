"""
Management command to expire STK push payments that never got a provider result.
Pending payments older than PENDING_PAYMENT_TTL_MINUTES (or --older-than) are cancelled,
which frees the registration to pay again.

Run: python manage.py sweep_pending_payments
Use --reconcile to ask IntaSend for each payment's state before expiring it.
Use --dry-run to only print what would be changed.
"""
from datetime import timedelta

from django.apps import apps
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Cancel pending M-Pesa payments older than the configured time-to-live'

    def add_arguments(self, parser):
        parser.add_argument(
            '--older-than',
            type=int,
            default=None,
            help='Age in minutes (defaults to PENDING_PAYMENT_TTL_MINUTES).',
        )
        parser.add_argument(
            '--reconcile',
            action='store_true',
            help='Query the payment provider before expiring each payment.',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only show what would be updated, do not save.',
        )

    def handle(self, *args, **options):
        minutes = options['older_than']
        if minutes is None:
            minutes = settings.PENDING_PAYMENT_TTL_MINUTES
        if minutes is None:
            self.stdout.write(self.style.WARNING(
                'PENDING_PAYMENT_TTL_MINUTES is not set; pending payments never expire. '
                'Pass --older-than to sweep anyway.'
            ))
            return
        if minutes < 0:
            raise CommandError('--older-than must not be negative')

        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING('Dry run: no changes will be saved.'))

        portal = apps.get_app_config('registrations').portal
        fetch_remote = portal.gateway.fetch_status if options['reconcile'] else None
        summary = portal.ledger.sweep_pending(
            timedelta(minutes=minutes), fetch_remote=fetch_remote, dry_run=dry_run,
        )

        for payment_id in summary['cancelled_ids']:
            verb = 'Would cancel' if dry_run else 'Cancelled'
            self.stdout.write(f'  {verb} {payment_id}')

        self.stdout.write(self.style.SUCCESS(
            f"\nChecked {summary['checked']} pending payment(s) older than {minutes} minute(s): "
            f"{summary['cancelled']} expired, {summary['reconciled']} reconciled, {summary['skipped']} skipped."
        ))
