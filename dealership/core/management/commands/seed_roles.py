from django.core.management.base import BaseCommand
from dealership.core.models import Role
from dealership.core.permissions import DEFAULT_ROLES, PermissionSet


class Command(BaseCommand):
    help = 'Create the default dealership roles: ADMIN, STAFF, CUSTOMER, SALESPERSON'

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset-permissions',
            action='store_true',
            help='Overwrite permissions of roles that already exist',
        )

    def handle(self, *args, **options):
        reset = options.get('reset_permissions', False)
        created_count = 0
        existing_count = 0

        for role_config in DEFAULT_ROLES:
            # Fails loudly if a default document ever drifts from the closed resource/action set
            document = PermissionSet.from_document(role_config['permissions']).to_document()
            role, created = Role.objects.get_or_create(
                name=role_config['name'],
                defaults={
                    'description': role_config['description'],
                    'permissions': document,
                }
            )

            if created:
                self.stdout.write(self.style.SUCCESS(f'✓ Created role: {role.name}'))
                created_count += 1
                continue

            existing_count += 1
            if reset:
                role.permissions = document
                role.description = role_config['description']
                role.save(update_fields=['permissions', 'description', 'updated_at'])
                self.stdout.write(f'  Reset permissions for role: {role.name}')
            else:
                self.stdout.write(f'  Role already exists: {role.name}')

        self.stdout.write(self.style.SUCCESS(
            f'\nCompleted: {created_count} roles created, {existing_count} roles already existed'
        ))
