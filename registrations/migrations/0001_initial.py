# Generated for registrations, payments and mission sign-ups

from django.db import migrations, models
import django.db.models.deletion
import django.db.models.functions.text
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Registration',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('registration_id', models.CharField(help_text='Generated ID e.g. ORG/CAM/2025/003 (unit + year + 3-digit sequence)', max_length=50, unique=True)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('email', models.EmailField(max_length=254)),
                ('phone', models.CharField(max_length=20)),
                ('date_of_birth', models.DateField(blank=True, null=True)),
                ('gender', models.CharField(max_length=20)),
                ('address', models.CharField(max_length=255)),
                ('city', models.CharField(max_length=100)),
                ('occupation', models.CharField(blank=True, default='', max_length=100)),
                ('emergency_contact', models.CharField(max_length=200)),
                ('emergency_phone', models.CharField(max_length=20)),
                ('unit', models.CharField(help_text='Unit slug or name, e.g. cambridge-unit', max_length=100)),
                ('ministry', models.CharField(max_length=100)),
                ('role', models.CharField(max_length=100)),
                ('testimony', models.TextField(blank=True, default='')),
                ('profile_image', models.CharField(blank=True, help_text='Image reference', max_length=500, null=True)),
                ('password_hash', models.CharField(blank=True, max_length=128, null=True)),
                ('payment_verified', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Registration',
                'verbose_name_plural': 'Registrations',
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='registration',
            constraint=models.UniqueConstraint(django.db.models.functions.text.Lower('email'), name='registration_email_ci_unique'),
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('payment_id', models.CharField(max_length=40, unique=True)),
                ('external_ref', models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ('merchant_ref', models.CharField(blank=True, max_length=100, null=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('currency', models.CharField(default='KES', max_length=3)),
                ('phone_number', models.CharField(blank=True, default='', max_length=20)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('verified', 'Verified'), ('failed', 'Failed'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=10)),
                ('confirmation_code', models.CharField(blank=True, max_length=30, null=True, unique=True)),
                ('transaction_date', models.CharField(blank=True, max_length=50, null=True)),
                ('result_desc', models.CharField(blank=True, max_length=255, null=True)),
                ('attached_data', models.JSONField(blank=True, default=dict, help_text='Registration draft sent with the STK push')),
                ('verified_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('registration', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='registrations.registration', to_field='registration_id')),
            ],
            options={
                'verbose_name': 'Payment',
                'verbose_name_plural': 'Payments',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='MissionRegistration',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('mission_id', models.CharField(max_length=40, unique=True)),
                ('official_name', models.CharField(max_length=200)),
                ('email', models.EmailField(blank=True, default='', max_length=254)),
                ('area_of_residence', models.CharField(max_length=200)),
                ('contacts', models.CharField(max_length=100)),
                ('ministry', models.CharField(max_length=100)),
                ('health_history', models.TextField()),
                ('arrival_date', models.CharField(max_length=20)),
                ('arrival_time', models.CharField(max_length=20)),
                ('arrival_period', models.CharField(choices=[('AM', 'AM'), ('PM', 'PM')], max_length=2)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('registration', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='mission_registration', to='registrations.registration', to_field='registration_id')),
            ],
            options={
                'verbose_name': 'Mission Registration',
                'verbose_name_plural': 'Mission Registrations',
                'ordering': ['-created_at'],
            },
        ),
    ]
