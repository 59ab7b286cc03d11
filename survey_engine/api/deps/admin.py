# survey_engine/api/deps/admin.py
from fastapi import Depends

from survey_engine.core.security import Identity, get_admin_identity


def require_admin(identity: Identity = Depends(get_admin_identity)) -> Identity:
    """Exige rol admin en el token (claim is_admin o roles)."""
    return identity
