"""
Storage interface shared by the in-memory and database backends.
"""
import abc


class IdentifierTaken(Exception):
    """Raised by insert_registration when another writer already holds the registration ID."""

    def __init__(self, registration_id):
        self.registration_id = registration_id
        super().__init__(registration_id)


class RegistrationStore(abc.ABC):
    """
    Registrations, payments and mission sign-ups behind one interface.

    Methods take and return records from ``registrations.records``; returned
    records are copies, so callers persist changes through the update methods.
    Check-then-write sequences must run inside ``atomic()``; reads passed
    ``for_update=True`` lock the row until the atomic block ends.
    """
    name = 'base'

    @abc.abstractmethod
    def atomic(self):
        """Context manager serializing the enclosed reads and writes."""

    # Registrations

    @abc.abstractmethod
    def registration_ids_with_prefix(self, prefix):
        """All registration IDs starting with prefix (e.g. ORG/CAM/2025/)."""

    @abc.abstractmethod
    def insert_registration(self, record):
        """
        Persist a new registration.
        Raises DuplicateEmail if the email is taken (case-insensitive) and
        IdentifierTaken if the registration ID is.
        """

    @abc.abstractmethod
    def get_registration(self, registration_id, for_update=False):
        """Registration by ID, or None."""

    @abc.abstractmethod
    def get_registration_by_email(self, email):
        """Registration by email (case-insensitive), or None."""

    @abc.abstractmethod
    def update_registration(self, record):
        """Persist changes to an existing registration. Raises DuplicateEmail on an email clash."""

    @abc.abstractmethod
    def delete_registration(self, registration_id):
        """Delete a registration with its payments and mission sign-up. Returns False if absent."""

    @abc.abstractmethod
    def list_registrations(self):
        """All registrations, most recent first."""

    # Payments

    @abc.abstractmethod
    def insert_payment(self, record):
        """Persist a new payment. Raises CodeAlreadyUsed if its confirmation code is taken."""

    @abc.abstractmethod
    def update_payment(self, record):
        """Persist changes to a payment. Raises CodeAlreadyUsed if its confirmation code is taken."""

    @abc.abstractmethod
    def get_payment(self, payment_id, for_update=False):
        """Payment by internal ID, or None."""

    @abc.abstractmethod
    def get_payment_by_external_ref(self, external_ref, for_update=False):
        """Most recent payment for a provider checkout reference, or None."""

    @abc.abstractmethod
    def get_payment_by_code(self, confirmation_code):
        """Payment holding a confirmation code, or None."""

    @abc.abstractmethod
    def list_payments(self, registration_id=None, status=None):
        """Payments, most recent first, optionally filtered."""

    # Mission registrations

    @abc.abstractmethod
    def insert_mission_registration(self, record):
        """Persist a mission sign-up. Raises AlreadyRegistered if the registration already has one."""

    @abc.abstractmethod
    def get_mission_registration(self, mission_id):
        """Mission sign-up by ID, or None."""

    @abc.abstractmethod
    def get_mission_registration_for(self, registration_id):
        """Mission sign-up of a registration, or None."""

    @abc.abstractmethod
    def list_mission_registrations(self):
        """All mission sign-ups, most recent first."""

    @abc.abstractmethod
    def clear(self):
        """Remove every record."""
