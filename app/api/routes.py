from flask_jwt_extended import jwt_required
from . import api_bp
from app.extensions import limiter
from app.utils.decorators import audit_log, require_permission
from .controllers import (
    auth_controller, user_controller, admin_appointment_controller, admin_user_controller,
    admin_payment_controller, therapist_controller, patient_controller
)


# --- Authentication Endpoints ---
@api_bp.route('/auth/register', methods=['POST'])
@limiter.limit("5 per hour")
@audit_log("PATIENT_REGISTRATION", "users")
def register():
    return auth_controller.register_user()

@api_bp.route('/auth/login', methods=['POST'])
@limiter.limit("10 per minute")
@audit_log("USER_LOGIN", "authentication")
def login():
    return auth_controller.login_user()

@api_bp.route('/auth/logout', methods=['POST'])
@jwt_required()
@audit_log("USER_LOGOUT", "authentication")
def logout():
    return auth_controller.logout_user()

@api_bp.route('/auth/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    return auth_controller.refresh_token()

@api_bp.route('/auth/change-password', methods=['POST'])
@jwt_required()
@audit_log("PASSWORD_CHANGE", "authentication")
def change_password():
    return auth_controller.change_user_password()


# --- User Profile Endpoint ---
@api_bp.route('/users/me', methods=['GET'])
@jwt_required()
@audit_log("VIEW_OWN_PROFILE", "users")
def get_current_user_route():
    return user_controller.get_current_user_details()


# --- Admin: Appointments ---
@api_bp.route('/admin/appointments/all/filter', methods=['GET'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("FILTER_APPOINTMENTS", "appointments")
def filter_appointments_route():
    return admin_appointment_controller.filter_appointments()

@api_bp.route('/admin/appointments/<int:appointment_id>', methods=['GET'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("VIEW_APPOINTMENT_DETAIL", "appointments")
def get_appointment_route(appointment_id):
    return admin_appointment_controller.get_appointment(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>', methods=['DELETE'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("DELETE_APPOINTMENT", "appointments")
def delete_appointment_route(appointment_id):
    return admin_appointment_controller.delete_appointment(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/sessions', methods=['GET'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("VIEW_APPOINTMENT_SESSIONS", "appointments")
def get_appointment_sessions_route(appointment_id):
    return admin_appointment_controller.get_appointment_sessions(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/assign', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("ASSIGN_THERAPIST", "appointments")
def assign_therapist_route(appointment_id):
    return admin_appointment_controller.assign_therapist(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/revoke', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("REVOKE_THERAPIST", "appointments")
def revoke_therapist_route(appointment_id):
    return admin_appointment_controller.revoke_therapist(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/paymentStatus', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("UPDATE_PAYMENT_STATUS", "appointments")
def update_payment_status_route(appointment_id):
    return admin_appointment_controller.update_payment_status(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/link-payment', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("LINK_PAYMENT", "appointments")
def link_payment_route(appointment_id):
    return admin_appointment_controller.link_payment(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/use-balance', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("USE_BALANCE", "appointments")
def use_balance_route(appointment_id):
    return admin_appointment_controller.use_balance(appointment_id)

@api_bp.route('/admin/appointments/<int:appointment_id>/refresh-payment', methods=['POST'])
@jwt_required()
@require_permission('appointments', 'admin')
@audit_log("REFRESH_PAYMENT", "appointments")
def refresh_payment_route(appointment_id):
    return admin_appointment_controller.refresh_payment(appointment_id)


# --- Admin: Patients ---
@api_bp.route('/admin/users/patients', methods=['GET'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("VIEW_ALL_PATIENTS", "patients")
def list_patients_route():
    return admin_user_controller.list_patients()

@api_bp.route('/admin/users/patients', methods=['POST'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("CREATE_PATIENT", "patients")
def create_patient_route():
    return admin_user_controller.create_patient()

@api_bp.route('/admin/users/patients/<int:patient_id>', methods=['GET'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("VIEW_PATIENT_DETAIL", "patients")
def get_patient_route(patient_id):
    return admin_user_controller.get_patient(patient_id)

@api_bp.route('/admin/users/patients/<int:patient_id>/ban', methods=['PUT'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("BAN_PATIENT", "patients")
def ban_patient_route(patient_id):
    return admin_user_controller.ban_patient(patient_id)

@api_bp.route('/admin/users/patients/verified-payments', methods=['POST'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("VIEW_VERIFIED_PAYMENTS", "patients")
def verified_payments_route():
    return admin_user_controller.get_verified_payments()

@api_bp.route('/admin/users/patients/<int:patient_id>/balance', methods=['GET'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("VIEW_PATIENT_BALANCE", "balances")
def get_patient_balance_route(patient_id):
    return admin_user_controller.get_patient_balance(patient_id)

@api_bp.route('/admin/users/patients/<int:patient_id>/balance', methods=['POST'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("ADJUST_PATIENT_BALANCE", "balances")
def adjust_patient_balance_route(patient_id):
    return admin_user_controller.adjust_patient_balance(patient_id)


# --- Admin: Therapists ---
@api_bp.route('/admin/users/therapists', methods=['GET'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("VIEW_ALL_THERAPISTS", "therapists")
def list_therapists_route():
    return admin_user_controller.list_therapists()

@api_bp.route('/admin/users/therapists', methods=['POST'])
@jwt_required()
@limiter.limit("10 per hour")
@require_permission('users', 'admin')
@audit_log("THERAPIST_REGISTRATION", "therapists")
def create_therapist_route():
    return admin_user_controller.create_therapist()

@api_bp.route('/admin/users/therapists/<int:therapist_id>/level', methods=['PUT'])
@jwt_required()
@require_permission('users', 'admin')
@audit_log("UPDATE_THERAPIST_LEVEL", "therapists")
def update_therapist_level_route(therapist_id):
    return admin_user_controller.update_therapist_level(therapist_id)


# --- Admin: Payouts ---
@api_bp.route('/admin/payments/pending', methods=['GET'])
@jwt_required()
@require_permission('payments', 'admin')
@audit_log("VIEW_PENDING_PAYOUTS", "payments")
def pending_payouts_route():
    return admin_payment_controller.get_pending_payouts()

@api_bp.route('/admin/payments/available', methods=['GET'])
@jwt_required()
@require_permission('payments', 'admin')
@audit_log("VIEW_AVAILABLE_PAYOUTS", "payments")
def available_payouts_route():
    return admin_payment_controller.get_available_payouts()

@api_bp.route('/admin/payments/history', methods=['GET'])
@jwt_required()
@require_permission('payments', 'admin')
@audit_log("VIEW_PAYOUT_HISTORY", "payments")
def payout_history_route():
    return admin_payment_controller.get_payout_history()

@api_bp.route('/admin/payments/<int:appointment_id>/reject-payout', methods=['PUT'])
@jwt_required()
@require_permission('payments', 'admin')
@audit_log("REJECT_PAYOUT", "payments")
def reject_payout_route(appointment_id):
    return admin_payment_controller.reject_payout(appointment_id)

@api_bp.route('/admin/payments/<int:appointment_id>/mark-as-paid', methods=['PUT'])
@jwt_required()
@require_permission('payments', 'admin')
@audit_log("MARK_PAYOUT_PAID", "payments")
def mark_as_paid_route(appointment_id):
    return admin_payment_controller.mark_as_paid(appointment_id)


# --- Therapist Endpoints ---
@api_bp.route('/therapist/appointments', methods=['GET'])
@jwt_required()
@require_permission('appointments', 'read')
@audit_log("VIEW_OWN_APPOINTMENTS", "appointments")
def therapist_appointments_route():
    return therapist_controller.get_my_appointments()

@api_bp.route('/therapist/appointments/<int:appointment_id>', methods=['GET'])
@jwt_required()
@require_permission('appointments', 'read')
@audit_log("VIEW_OWN_APPOINTMENT_DETAIL", "appointments")
def therapist_appointment_route(appointment_id):
    return therapist_controller.get_my_appointment(appointment_id)

@api_bp.route('/therapist/appointments/<int:appointment_id>/validate', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'write')
@audit_log("VALIDATE_SESSION", "appointments")
def validate_session_route(appointment_id):
    return therapist_controller.validate_session(appointment_id)

@api_bp.route('/therapist/appointments/<int:appointment_id>/status', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'write')
@audit_log("UPDATE_APPOINTMENT_STATUS", "appointments")
def therapist_status_route(appointment_id):
    return therapist_controller.update_appointment_status(appointment_id)

@api_bp.route('/therapist/appointments/<int:appointment_id>/sessions/<int:session_index>/status', methods=['PUT'])
@jwt_required()
@require_permission('appointments', 'write')
@audit_log("UPDATE_SESSION_STATUS", "appointments")
def therapist_session_status_route(appointment_id, session_index):
    return therapist_controller.update_session_status(appointment_id, session_index)

@api_bp.route('/therapist/payments/rejected', methods=['GET'])
@jwt_required()
@require_permission('payments', 'read')
@audit_log("VIEW_REJECTED_PAYOUTS", "payments")
def rejected_payouts_route():
    return therapist_controller.get_rejected_payouts()


# --- Patient Endpoints ---
@api_bp.route('/patient/onboarding', methods=['GET'])
@jwt_required()
@require_permission('onboarding', 'read')
@audit_log("VIEW_ONBOARDING", "onboarding")
def get_onboarding_route():
    return patient_controller.get_onboarding()

@api_bp.route('/patient/onboarding', methods=['PUT'])
@jwt_required()
@require_permission('onboarding', 'write')
@audit_log("SAVE_ONBOARDING", "onboarding")
def save_onboarding_route():
    return patient_controller.save_onboarding()

@api_bp.route('/patient/appointments', methods=['GET'])
@jwt_required()
@require_permission('appointments', 'read')
@audit_log("VIEW_OWN_APPOINTMENTS", "appointments")
def patient_appointments_route():
    return patient_controller.get_my_appointments()

@api_bp.route('/patient/balance', methods=['GET'])
@jwt_required()
@require_permission('balances', 'read')
@audit_log("VIEW_OWN_BALANCE", "balances")
def patient_balance_route():
    return patient_controller.get_my_balance()
