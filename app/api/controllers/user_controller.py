from flask import jsonify
from app.utils.decorators import current_user

def get_current_user_details():
    """
    Get details for the currently authenticated user.
    """
    user = current_user()
    if not user:
        return jsonify({"error": "User not found"}), 404

    data = user.to_dict()
    if user.role_name == 'patient':
        data['onboarding_completed'] = user.onboarding is not None
    return jsonify(data), 200
