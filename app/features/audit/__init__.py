"""
Audit feature module.

Append-only record of every role, override, invite and deletion mutation.
"""
