from enum import Enum


class Role(str, Enum):
    ADMIN = 'admin'
    FACULTY = 'faculty'
    STAFF = 'staff'
    STUDENT = 'student'

    def __str__(self):
        return self.value


ALL_ROLES = (Role.ADMIN, Role.FACULTY, Role.STAFF, Role.STUDENT)

# Older accounts were created with 'teacher' before faculty was introduced
_ALIASES = {'teacher': Role.FACULTY}


def normalize_role(value) -> Role:
    """Map raw profile data onto a Role; anything unrecognised is a student."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return Role.STUDENT
    key = value.strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return Role(key)
    except ValueError:
        return Role.STUDENT


def parse_roles(values):
    """Strict conversion for role lists written in code; unknown names raise ValueError."""
    if values is None:
        return None
    roles = set()
    for value in values:
        if isinstance(value, Role):
            roles.add(value)
            continue
        key = str(value).strip().lower()
        roles.add(_ALIASES.get(key) or Role(key))
    return frozenset(roles)
