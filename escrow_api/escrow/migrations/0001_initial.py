from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('projects', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='EscrowAccount',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('total_funded', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('held_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('released_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=14)),
                ('platform_fee_percent', models.DecimalField(decimal_places=2, default=Decimal('10.00'), max_digits=5)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('project', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='escrow_account', to='projects.project')),
            ],
            options={
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('total_funded__gte', 0)), name='escrow_total_funded_non_negative'),
                    models.CheckConstraint(condition=models.Q(('held_amount__gte', 0)), name='escrow_held_non_negative'),
                    models.CheckConstraint(condition=models.Q(('released_amount__gte', 0)), name='escrow_released_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReleaseRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('platform_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('expert_receives', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('status', models.CharField(choices=[('open', 'Open'), ('approved', 'Approved'), ('rejected', 'Rejected'), ('withdrawn', 'Withdrawn')], default='open', max_length=20)),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='approved_releases', to=settings.AUTH_USER_MODEL)),
                ('milestone', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='release_requests', to='projects.milestone')),
                ('rejected_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='rejected_releases', to=settings.AUTH_USER_MODEL)),
                ('requested_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='release_requests', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'open')), fields=('milestone',), name='one_open_release_per_milestone'),
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='release_amount_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LedgerEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entry_type', models.CharField(choices=[('funding', 'Funding'), ('release', 'Release')], max_length=20)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('held_after', models.DecimalField(decimal_places=2, max_digits=14)),
                ('released_after', models.DecimalField(decimal_places=2, max_digits=14)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('account', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='entries', to='escrow.escrowaccount')),
                ('actor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to=settings.AUTH_USER_MODEL)),
                ('release_request', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entry', to='escrow.releaserequest')),
            ],
            options={
                'verbose_name_plural': 'Ledger entries',
                'ordering': ['-created_at', '-id'],
            },
        ),
    ]
