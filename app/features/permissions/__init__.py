"""
Permission management feature module.

Role hierarchy, per-user grant/revoke overrides and the resolution engine that
answers "may this user perform this action on this app".
"""
