# Generated manually for the initial dealership schema

import dealership.inventory.models
import django.core.validators
import django.db.models.deletion
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Car',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('vin', models.CharField(max_length=17, validators=[django.core.validators.MinLengthValidator(17)])),
                ('make', models.CharField(max_length=50)),
                ('model', models.CharField(max_length=50)),
                ('year', models.PositiveIntegerField(validators=[dealership.inventory.models.validate_model_year])),
                ('car_type', models.CharField(choices=[('NEW', 'New'), ('USED', 'Used')], max_length=10)),
                ('price', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('mileage', models.PositiveIntegerField(blank=True, null=True)),
                ('color', models.CharField(blank=True, max_length=30)),
                ('license_plate', models.CharField(blank=True, max_length=20)),
                ('transmission', models.CharField(blank=True, choices=[('AUTOMATIC', 'Automatic'), ('MANUAL', 'Manual'), ('CVT', 'CVT'), ('SEMI-AUTOMATIC', 'Semi-automatic'), ('DUAL-CLUTCH', 'Dual-clutch')], max_length=20)),
                ('fuel_type', models.CharField(blank=True, choices=[('GASOLINE', 'Gasoline'), ('DIESEL', 'Diesel'), ('ELECTRIC', 'Electric'), ('HYBRID', 'Hybrid'), ('PLUG-IN HYBRID', 'Plug-in hybrid')], max_length=20)),
                ('engine_size', models.CharField(blank=True, max_length=20)),
                ('description', models.TextField(blank=True)),
                ('features', models.JSONField(blank=True, default=list)),
                ('images', models.JSONField(blank=True, default=list)),
                ('status', models.CharField(choices=[('AVAILABLE', 'Available'), ('RESERVED', 'Reserved'), ('SOLD', 'Sold'), ('MAINTENANCE', 'Maintenance')], default='AVAILABLE', max_length=20)),
                ('is_featured', models.BooleanField(default=False)),
                ('exterior_condition', models.CharField(blank=True, choices=[('EXCELLENT', 'Excellent'), ('GOOD', 'Good'), ('FAIR', 'Fair'), ('POOR', 'Poor')], max_length=10)),
                ('interior_condition', models.CharField(blank=True, choices=[('EXCELLENT', 'Excellent'), ('GOOD', 'Good'), ('FAIR', 'Fair'), ('POOR', 'Poor')], max_length=10)),
                ('previous_owners', models.PositiveIntegerField(default=0)),
                ('service_history', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'cars',
                'ordering': ['-created_at'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='SparePart',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('name', models.CharField(max_length=100)),
                ('part_number', models.CharField(max_length=50)),
                ('description', models.TextField(blank=True)),
                ('price', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('stock', models.IntegerField(default=0)),
                ('min_stock_level', models.PositiveIntegerField(default=5)),
                ('category', models.CharField(max_length=50)),
                ('compatibility', models.JSONField(blank=True, default=list)),
                ('manufacturer', models.CharField(blank=True, max_length=50)),
                ('weight', models.FloatField(blank=True, null=True)),
                ('dimensions', models.CharField(blank=True, max_length=50)),
                ('images', models.JSONField(blank=True, default=list)),
                ('is_original', models.BooleanField(default=True)),
                ('location', models.CharField(blank=True, max_length=50)),
                ('warranty_period', models.PositiveIntegerField(blank=True, help_text='Warranty in months', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'spare_parts',
                'ordering': ['name'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='StockAdjustment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('operation', models.CharField(choices=[('add', 'Stock In'), ('subtract', 'Stock Out')], max_length=10)),
                ('quantity', models.PositiveIntegerField()),
                ('previous_stock', models.IntegerField()),
                ('new_stock', models.IntegerField()),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='stock_adjustments', to=settings.AUTH_USER_MODEL)),
                ('spare_part', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='adjustments', to='inventory.sparepart')),
            ],
            options={
                'db_table': 'stock_adjustments',
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddIndex(
            model_name='car',
            index=models.Index(fields=['make', 'model'], name='idx_car_make_model'),
        ),
        migrations.AddIndex(
            model_name='car',
            index=models.Index(fields=['status'], name='idx_car_status'),
        ),
        migrations.AddIndex(
            model_name='car',
            index=models.Index(fields=['price'], name='idx_car_price'),
        ),
        migrations.AddIndex(
            model_name='car',
            index=models.Index(fields=['year'], name='idx_car_year'),
        ),
        migrations.AddConstraint(
            model_name='car',
            constraint=models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True)), fields=('vin',), name='uniq_active_car_vin'),
        ),
        migrations.AddIndex(
            model_name='sparepart',
            index=models.Index(fields=['name'], name='idx_part_name'),
        ),
        migrations.AddIndex(
            model_name='sparepart',
            index=models.Index(fields=['category'], name='idx_part_category'),
        ),
        migrations.AddIndex(
            model_name='sparepart',
            index=models.Index(fields=['stock'], name='idx_part_stock'),
        ),
        migrations.AddConstraint(
            model_name='sparepart',
            constraint=models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True)), fields=('part_number',), name='uniq_active_part_number'),
        ),
        migrations.AddConstraint(
            model_name='sparepart',
            constraint=models.CheckConstraint(condition=models.Q(('stock__gte', 0)), name='spare_part_stock_non_negative'),
        ),
    ]
