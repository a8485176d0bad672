"""
Test suite for the core module
Tests: permission sets, roles, authentication, users, audit logs and error mapping
"""
from io import StringIO
from django.core.management import call_command
from django.test import TestCase, RequestFactory
from rest_framework import status
from rest_framework.exceptions import NotFound
from dealership.core.exceptions import (
    api_exception_handler, ConflictError, InsufficientStockError, InvalidTransitionError,
)
from dealership.core.models import AuditLog, Role
from dealership.core.permissions import PermissionSet, DEFAULT_ROLES, RESOURCES, ACTIONS
from dealership.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from dealership.core.utils import append_note, create_audit_log


class PermissionSetTests(TestCase):
    """Test parsing and querying of role permission documents"""

    def test_from_document(self):
        permission_set = PermissionSet.from_document({'orders': ['create', 'read'], 'cars': ['read']})
        self.assertTrue(permission_set.allows('orders', 'create'))
        self.assertTrue(permission_set.allows('cars', 'read'))
        self.assertFalse(permission_set.allows('cars', 'update'))
        self.assertFalse(permission_set.allows('services', 'read'))
        self.assertEqual(len(permission_set), 3)

    def test_empty_document_grants_nothing(self):
        self.assertEqual(len(PermissionSet.from_document(None)), 0)
        self.assertEqual(len(PermissionSet.from_document({})), 0)

    def test_unknown_resource_rejected(self):
        with self.assertRaises(ValueError):
            PermissionSet.from_document({'spaceships': ['read']})

    def test_unknown_action_rejected(self):
        with self.assertRaises(ValueError):
            PermissionSet.from_document({'cars': ['fly']})

    def test_actions_must_be_list(self):
        with self.assertRaises(ValueError):
            PermissionSet.from_document({'cars': 'read'})

    def test_camel_case_alias(self):
        permission_set = PermissionSet.from_document({'spareParts': ['read']})
        self.assertTrue(permission_set.allows('spare_parts', 'read'))

    def test_as_mapping_is_total(self):
        mapping = PermissionSet.from_document({'orders': ['read']}).as_mapping()
        self.assertEqual(set(mapping), set(RESOURCES))
        for resource in RESOURCES:
            self.assertEqual(set(mapping[resource]), set(ACTIONS))
        self.assertTrue(mapping['orders']['read'])
        self.assertFalse(mapping['orders']['delete'])

    def test_document_round_trip_is_normalised(self):
        document = {'cars': ['update', 'read'], 'spareParts': ['read']}
        normalised = PermissionSet.from_document(document).to_document()
        self.assertEqual(normalised, {'cars': ['read', 'update'], 'spare_parts': ['read']})

    def test_everything(self):
        permission_set = PermissionSet.everything()
        self.assertEqual(len(permission_set), len(RESOURCES) * len(ACTIONS))

    def test_default_roles_parse(self):
        for role in DEFAULT_ROLES:
            PermissionSet.from_document(role['permissions'])


class SeedRolesCommandTests(TestCase):

    def test_creates_default_roles(self):
        call_command('seed_roles', stdout=StringIO())
        self.assertEqual(
            set(Role.objects.values_list('name', flat=True)),
            {role['name'] for role in DEFAULT_ROLES},
        )

    def test_is_idempotent(self):
        call_command('seed_roles', stdout=StringIO())
        out = StringIO()
        call_command('seed_roles', stdout=out)
        self.assertEqual(Role.objects.count(), len(DEFAULT_ROLES))
        self.assertIn('0 roles created', out.getvalue())

    def test_reset_permissions(self):
        call_command('seed_roles', stdout=StringIO())
        Role.objects.filter(name='STAFF').update(permissions={})
        call_command('seed_roles', '--reset-permissions', stdout=StringIO())
        staff = Role.objects.get(name='STAFF')
        self.assertTrue(PermissionSet.from_document(staff.permissions).allows('orders', 'update'))


class UserPermissionTests(TestCase):
    """Test how users resolve permissions through their role"""

    def test_user_without_role_has_no_permissions(self):
        user = TestDataFactory.create_user()
        self.assertFalse(user.has_resource_permission('cars', 'read'))

    def test_superuser_has_every_permission(self):
        user = TestDataFactory.create_user(is_superuser=True)
        self.assertTrue(user.has_resource_permission('roles', 'delete'))

    def test_customer_role(self):
        user = TestDataFactory.create_user(role='CUSTOMER')
        self.assertTrue(user.has_resource_permission('orders', 'create'))
        self.assertFalse(user.has_resource_permission('orders', 'update'))
        self.assertFalse(user.has_resource_permission('reports', 'read'))


class AuthAPITests(TestCase):
    """Test registration, login and the current user endpoint"""

    def setUp(self):
        TestDataFactory.create_role('CUSTOMER')
        self.client = AuthenticatedAPIClient()

    def test_register_assigns_customer_role(self):
        data = {
            'username': 'newcustomer',
            'email': 'newcustomer@test.com',
            'password': 'Str0ng-Passw0rd!',
            'password_confirm': 'Str0ng-Passw0rd!',
            'role': 'ADMIN',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['role'], 'CUSTOMER')

    def test_register_password_mismatch(self):
        data = {
            'username': 'mismatch',
            'email': 'mismatch@test.com',
            'password': 'Str0ng-Passw0rd!',
            'password_confirm': 'Other-Passw0rd!',
        }
        response = self.client.post('/api/v1/auth/register/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_login(self):
        TestDataFactory.create_user(username='loginuser', password='testpass123', role='CUSTOMER')
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'loginuser', 'password': 'testpass123'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

    def test_login_inactive_user(self):
        TestDataFactory.create_user(username='inactive', password='testpass123', is_active=False)
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'inactive', 'password': 'testpass123'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me(self):
        user = TestDataFactory.create_user(role='CUSTOMER')
        self.client.authenticate_user(user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], user.id)
        self.assertTrue(response.data['permissions']['orders']['create'])
        self.assertFalse(response.data['permissions']['orders']['update'])
        self.assertTrue(response.data['can_access_dashboard'])
        self.assertFalse(response.data['can_access_reports'])

    def test_me_requires_authentication(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class UserAPITests(TestCase):
    """Test user management endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_user(role='ADMIN')
        self.customer = TestDataFactory.create_user(role='CUSTOMER')
        self.client = AuthenticatedAPIClient()

    def test_admin_lists_users(self):
        self.client.authenticate_user(self.admin)
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)

    def test_customer_cannot_list_users(self):
        self.client.authenticate_user(self.customer)
        response = self.client.get('/api/v1/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_customer_can_read_self(self):
        self.client.authenticate_user(self.customer)
        response = self.client.get(f'/api/v1/users/{self.customer.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_delete_deactivates(self):
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/v1/users/{self.customer.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.customer.refresh_from_db()
        self.assertFalse(self.customer.is_active)


class RoleAPITests(TestCase):
    """Test role endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_user(role='ADMIN')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_create_role_normalises_document(self):
        data = {'name': 'mechanic', 'permissions': {'services': ['update', 'read']}}
        response = self.client.post('/api/v1/roles/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['name'], 'MECHANIC')
        self.assertEqual(response.data['permissions'], {'services': ['read', 'update']})

    def test_create_role_with_unknown_resource(self):
        data = {'name': 'broken', 'permissions': {'spaceships': ['read']}}
        response = self.client.post('/api/v1/roles/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_duplicate_role_name_conflicts(self):
        response = self.client.post('/api/v1/roles/', {'name': 'admin', 'permissions': {}}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['field'], 'name')

    def test_delete_role_in_use(self):
        role = Role.objects.get(name='ADMIN')
        response = self.client.delete(f'/api/v1/roles/{role.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


class AuditLogTests(TestCase):
    """Test audit log helpers and endpoint"""

    def test_create_audit_log(self):
        user = TestDataFactory.create_user()
        log = create_audit_log(
            user=user,
            action='order_create',
            model_name='Order',
            object_id=42,
            object_reference='ORD-1',
            changes={'total_amount': '10.00'},
        )
        self.assertIsNotNone(log)
        self.assertEqual(log.object_id, '42')
        self.assertEqual(log.user, user)

    def test_missing_fields_skipped(self):
        self.assertIsNone(create_audit_log(action='order_create', model_name='Order'))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_audit_log_list_requires_staff(self):
        client = AuthenticatedAPIClient()
        client.authenticate_user(TestDataFactory.create_user(role='CUSTOMER'))
        response = client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        client.authenticate_user(TestDataFactory.create_user(is_staff=True))
        response = client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class NoteTests(TestCase):
    """Test note stamping"""

    def test_append_to_empty(self):
        note = append_note('', 'Customer called')
        self.assertTrue(note.endswith(': Customer called'))

    def test_append_keeps_existing(self):
        note = append_note('First entry', 'Second entry', label='CANCELLED')
        self.assertTrue(note.startswith('First entry\n\n'))
        self.assertIn('CANCELLED on ', note)
        self.assertTrue(note.endswith(': Second entry'))


class ExceptionHandlerTests(TestCase):
    """Test mapping of typed errors to responses"""

    def setUp(self):
        self.context = {'view': None, 'request': RequestFactory().get('/')}

    def test_conflict(self):
        response = api_exception_handler(ConflictError('duplicate', field='vin'), self.context)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {'error': 'conflict', 'message': 'duplicate', 'field': 'vin'})

    def test_insufficient_stock_carries_quantities(self):
        error = InsufficientStockError('not enough', field='items', available=2, requested=5)
        response = api_exception_handler(error, self.context)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['available'], 2)
        self.assertEqual(response.data['requested'], 5)

    def test_invalid_transition(self):
        response = api_exception_handler(InvalidTransitionError('DELIVERED', 'PENDING'), self.context)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_transition')
        self.assertEqual(response.data['current'], 'DELIVERED')

    def test_drf_errors_pass_through(self):
        response = api_exception_handler(NotFound(), self.context)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_unexpected_error_is_internal(self):
        with self.assertLogs('dealership.core.exceptions', level='ERROR'):
            response = api_exception_handler(RuntimeError('boom'), self.context)
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'internal_error')
