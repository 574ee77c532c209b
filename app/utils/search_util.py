# /app/utils/search_util.py
from app.extensions import db
from app.utils.encryption_util import encryptor

def match_profile_user_ids(profile_model, needle):
    """User ids whose encrypted ``full_name`` contains ``needle``, case-insensitively.

    Names are encrypted at rest, so they cannot be matched in SQL.
    """
    if not needle:
        return []
    needle = needle.lower()
    rows = db.session.execute(db.select(profile_model.user_id, profile_model.full_name)).all()
    return [
        user_id for user_id, full_name in rows
        if needle in (encryptor.decrypt(full_name) or '').lower()
    ]
