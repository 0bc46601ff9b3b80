"""
Management command to seed sample registrations for development.
Creates three members (one per unit) with verified payments and mission sign-ups for two of them.

Run: python manage.py seed_test_data
Use --clear to delete all existing registrations, payments and mission sign-ups first.
"""
import random

from django.apps import apps
from django.core.management.base import BaseCommand

from registrations.exceptions import PortalError


SAMPLE_MEMBERS = [
    {
        'firstName': 'John',
        'lastName': 'Doe',
        'email': 'john.doe@example.com',
        'phone': '0712345678',
        'dateOfBirth': '1990-01-15',
        'gender': 'male',
        'address': '123 Main Street',
        'city': 'Nairobi',
        'occupation': 'Teacher',
        'emergencyContact': 'Jane Doe',
        'emergencyPhone': '0723456789',
        'testimony': 'I found Christ through this ministry',
        'ministry': 'worship',
        'rocimUnit': 'cambridge-unit',
        'role': 'member',
        'password': 'john5678',
    },
    {
        'firstName': 'Mary',
        'lastName': 'Smith',
        'email': 'mary.smith@example.com',
        'phone': '0734567890',
        'dateOfBirth': '1985-05-20',
        'gender': 'female',
        'address': '456 Oak Avenue',
        'city': 'Mombasa',
        'occupation': 'Nurse',
        'emergencyContact': 'Peter Smith',
        'emergencyPhone': '0745678901',
        'testimony': 'God has been faithful in my life',
        'ministry': 'intercessory',
        'rocimUnit': 'diaspora-unit',
        'role': 'youth-leader',
        'password': 'mary7890',
    },
    {
        'firstName': 'David',
        'lastName': 'Johnson',
        'email': 'david.johnson@example.com',
        'phone': '0756789012',
        'dateOfBirth': '1992-08-10',
        'gender': 'male',
        'address': '789 Pine Road',
        'city': 'Kisumu',
        'occupation': 'Engineer',
        'emergencyContact': 'Sarah Johnson',
        'emergencyPhone': '0767890123',
        'testimony': 'Blessed to serve in this ministry',
        'ministry': 'discipleship',
        'rocimUnit': 'moi-unit',
        'role': 'teacher',
        'password': 'david9012',
    },
]

# Mission sign-ups for the first two members
SAMPLE_MISSIONS = [
    {
        'areaOfResidence': 'Nairobi',
        'healthHistory': 'Good',
        'arrivalDate': '2025-01-01',
        'arrivalTime': '10:00',
        'arrivalPeriod': 'AM',
    },
    {
        'areaOfResidence': 'Mombasa',
        'healthHistory': 'Good',
        'arrivalDate': '2025-01-02',
        'arrivalTime': '11:00',
        'arrivalPeriod': 'AM',
    },
]


def _sample_code():
    return f"QH{random.randint(0, 99999999):08d}"


class Command(BaseCommand):
    help = 'Seed sample registrations, verified payments and mission sign-ups'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Delete all existing registrations, payments and mission sign-ups first.',
        )

    def handle(self, *args, **options):
        portal = apps.get_app_config('registrations').portal

        if options['clear']:
            portal.store.clear()
            self.stdout.write(self.style.WARNING('Cleared all registration data'))

        self.stdout.write(f'Seeding sample data ({portal.store.name} store)...')
        created = []
        for member in SAMPLE_MEMBERS:
            if portal.registrations.get_by_email(member['email']) is not None:
                self.stdout.write(self.style.WARNING(f"{member['email']} already registered, skipped"))
                continue
            try:
                registration = portal.registrations.create(member)
                portal.registrations.set_password(registration.registration_id, member['password'])
                portal.ledger.verify_by_code(registration.registration_id, _sample_code())
            except PortalError as e:
                self.stdout.write(self.style.ERROR(f"Could not seed {member['email']}: {e.message}"))
                continue
            created.append((registration, member))
            self.stdout.write(self.style.SUCCESS(f'✓ {registration.registration_id} {registration.full_name}'))

        for (registration, member), mission in zip(created, SAMPLE_MISSIONS):
            data = dict(
                mission,
                registrationId=registration.registration_id,
                officialName=registration.full_name,
                email=registration.email,
                contacts=registration.phone,
                ministry=member['ministry'],
            )
            try:
                portal.missions.create(data)
            except PortalError as e:
                self.stdout.write(self.style.ERROR(f'Mission sign-up for {registration.registration_id} failed: {e.message}'))
                continue
            self.stdout.write(self.style.SUCCESS(f'✓ Mission sign-up for {registration.registration_id}'))

        self.stdout.write(self.style.SUCCESS(f'\n✓ Seeded {len(created)} registrations'))
