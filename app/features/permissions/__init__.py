"""
Permission feature module.

Decides whether an authenticated user may act on an organization, based on
the role grants they hold and their organization memberships.
"""
