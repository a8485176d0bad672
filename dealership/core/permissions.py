"""
Role permission model and DRF permission classes.

A role's permissions are stored as a document such as
``{"orders": ["create", "read"], "cars": ["read"]}``. At load time the
document is parsed into a PermissionSet, a closed mapping from
(resource, action) to a boolean. Unknown resources or actions are rejected.
"""
from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework.permissions import BasePermission

RESOURCES = (
    'users',
    'roles',
    'cars',
    'spare_parts',
    'orders',
    'services',
    'reports',
    'dashboard',
)

ACTIONS = ('create', 'read', 'update', 'delete')

# Older documents used camelCase resource names
RESOURCE_ALIASES = {
    'spareParts': 'spare_parts',
}


class PermissionSet:
    """Immutable set of granted (resource, action) pairs"""

    def __init__(self, grants=()):
        pairs = frozenset(grants)
        for resource, action in pairs:
            if resource not in RESOURCES:
                raise ValueError(f"Unknown resource '{resource}'")
            if action not in ACTIONS:
                raise ValueError(f"Unknown action '{action}' for resource '{resource}'")
        self._grants = pairs

    @classmethod
    def from_document(cls, document):
        if document is None:
            return cls()
        if not isinstance(document, dict):
            raise ValueError('Permissions must be an object mapping resources to action lists')
        grants = []
        for resource, actions in document.items():
            resource = RESOURCE_ALIASES.get(resource, resource)
            if not isinstance(actions, (list, tuple)):
                raise ValueError(f"Actions for resource '{resource}' must be a list")
            for action in actions:
                grants.append((resource, action))
        return cls(grants)

    @classmethod
    def everything(cls):
        return cls((resource, action) for resource in RESOURCES for action in ACTIONS)

    def allows(self, resource, action):
        return (resource, action) in self._grants

    def as_mapping(self):
        """Full (resource -> action -> bool) table"""
        return {
            resource: {action: (resource, action) in self._grants for action in ACTIONS}
            for resource in RESOURCES
        }

    def to_document(self):
        document = {}
        for resource in RESOURCES:
            actions = [action for action in ACTIONS if (resource, action) in self._grants]
            if actions:
                document[resource] = actions
        return document

    def to_claims(self):
        return sorted(f'{resource}:{action}' for resource, action in self._grants)

    def __contains__(self, pair):
        return pair in self._grants

    def __len__(self):
        return len(self._grants)

    def __eq__(self, other):
        return isinstance(other, PermissionSet) and self._grants == other._grants

    def __hash__(self):
        return hash(self._grants)

    def __repr__(self):
        return f'PermissionSet({self.to_claims()!r})'


DEFAULT_ROLES = [
    {
        'name': 'ADMIN',
        'description': 'Administrator with full access',
        'permissions': {
            'users': ['create', 'read', 'update', 'delete'],
            'roles': ['create', 'read', 'update', 'delete'],
            'cars': ['create', 'read', 'update', 'delete'],
            'spare_parts': ['create', 'read', 'update', 'delete'],
            'orders': ['create', 'read', 'update', 'delete'],
            'services': ['create', 'read', 'update', 'delete'],
            'reports': ['read'],
            'dashboard': ['read'],
        },
    },
    {
        'name': 'STAFF',
        'description': 'Staff with limited access',
        'permissions': {
            'users': ['read'],
            'cars': ['read', 'update'],
            'spare_parts': ['read', 'update'],
            'orders': ['read', 'update'],
            'services': ['create', 'read', 'update'],
            'reports': ['read'],
            'dashboard': ['read'],
        },
    },
    {
        'name': 'CUSTOMER',
        'description': 'Regular customer',
        'permissions': {
            'cars': ['read'],
            'spare_parts': ['read'],
            'orders': ['create', 'read'],
            'services': ['create', 'read'],
            'dashboard': ['read'],
        },
    },
    {
        'name': 'SALESPERSON',
        'description': 'Sales representative',
        'permissions': {
            'users': ['read'],
            'cars': ['read', 'update'],
            'spare_parts': ['read'],
            'orders': ['create', 'read', 'update'],
            'services': ['read'],
            'reports': ['read'],
            'dashboard': ['read'],
        },
    },
]


class ResourcePermission(BasePermission):
    """Grant access when the user's role allows ``action`` on ``resource``"""
    resource = None
    action = None

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return user.has_resource_permission(self.resource, self.action)


def resource_permission(resource, action):
    """Build a DRF permission class bound to one (resource, action) pair"""
    if resource not in RESOURCES or action not in ACTIONS:
        raise ValueError(f'Unknown permission {resource}:{action}')
    return type(
        f'Can{action.title()}{resource.title().replace("_", "")}',
        (ResourcePermission,),
        {
            'resource': resource,
            'action': action,
            'message': f'You do not have permission to {action} {resource.replace("_", " ")}',
        },
    )


def require_permission(request, resource, action):
    """Raise the matching DRF error unless the request may perform ``action`` on ``resource``"""
    user = request.user
    if not user or not user.is_authenticated:
        raise NotAuthenticated()
    if not user.has_resource_permission(resource, action):
        raise PermissionDenied(f'You do not have permission to {action} {resource.replace("_", " ")}')
