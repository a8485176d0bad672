from django.db import migrations, models


def create_workshop_lock(apps, schema_editor):
    BookingLock = apps.get_model('workshop', 'BookingLock')
    BookingLock.objects.using(schema_editor.connection.alias).get_or_create(name='workshop')


class Migration(migrations.Migration):

    dependencies = [
        ('workshop', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='BookingLock',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=50, unique=True)),
            ],
            options={
                'db_table': 'service_booking_locks',
            },
        ),
        migrations.RunPython(create_workshop_lock, migrations.RunPython.noop),
    ]
