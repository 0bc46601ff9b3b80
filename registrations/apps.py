from django.apps import AppConfig


class RegistrationsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'registrations'
    verbose_name = 'Registrations'

    def ready(self):
        from .services import Portal

        # One store per process, shared by every request
        self.portal = Portal.from_settings()
