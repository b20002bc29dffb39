from rest_framework import permissions

ADMIN = 'ADMIN'
BILLING_STAFF = 'BILLING_STAFF'
DOCTOR = 'DOCTOR'
PATIENT = 'PATIENT'
RECEPTION = 'RECEPTION'

# Single source of truth for who may do what. Views declare which capability
# each action needs; ownership checks happen in querysets and services.
CAPABILITIES = {
    ADMIN: {
        'invoice.create', 'invoice.view', 'invoice.pay', 'invoice.cancel', 'invoice.insurance',
        'billing.report', 'billing.history',
        'insurance.provider.view', 'insurance.provider.manage', 'insurance.policy.manage',
        'claim.create', 'claim.view', 'claim.edit', 'claim.submit', 'claim.cancel',
        'claim.status', 'claim.pay', 'claim.statistics',
    },
    BILLING_STAFF: {
        'invoice.create', 'invoice.view', 'invoice.pay', 'invoice.cancel', 'invoice.insurance',
        'billing.report', 'billing.history',
        'insurance.provider.view', 'insurance.policy.manage',
        'claim.view', 'claim.status', 'claim.pay', 'claim.statistics',
    },
    DOCTOR: {
        'claim.create', 'claim.view', 'claim.edit', 'claim.submit', 'claim.cancel',
    },
    PATIENT: {
        'invoice.view', 'billing.history', 'claim.view',
    },
    RECEPTION: set(),
}

STAFF_ROLES = (ADMIN, BILLING_STAFF)


def role_of(user):
    if user.is_superuser:
        return ADMIN
    return getattr(user, 'role', None)


def has_capability(user, capability):
    if not (user and user.is_authenticated):
        return False
    return capability in CAPABILITIES.get(role_of(user), set())


def is_staff_role(user):
    return role_of(user) in STAFF_ROLES


class HasCapability(permissions.BasePermission):
    """
    Looks up ``view.capabilities[view.action]`` (viewsets) or
    ``view.capabilities[request.method]`` (plain API views).
    """
    message = 'You do not have permission to perform this action.'

    def has_permission(self, request, view):
        capabilities = getattr(view, 'capabilities', {})
        key = getattr(view, 'action', None) or request.method
        required = capabilities.get(key)
        if required is None:
            return False
        return has_capability(request.user, required)
