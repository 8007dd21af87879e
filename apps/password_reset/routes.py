import logging

from flask import request, jsonify, current_app
import mysql.connector
import requests

from apps import get_db_connection
from apps.password_reset import blueprint
from apps.utils.otp import generate_otp, otp_expiry, otp_expired
from apps.utils.passwords import hash_password
from apps.utils.tokens import TokenService

logger = logging.getLogger(__name__)

GENERIC_RESET_MESSAGE = 'If the account exists, a one-time code has been sent to it.'
MIN_PASSWORD_LENGTH = 8

# ----------------------
# Helper Functions
# ----------------------

def send_sms_infobip(phone, otp):
    """Send the OTP by SMS through the Infobip API. Returns True when accepted."""
    config = current_app.config
    if not config.get('INFOBIP_API_KEY'):
        logger.warning("INFOBIP_API_KEY is not set, OTP SMS to %s not sent", phone)
        return False

    url = f"{config['INFOBIP_BASE_URL']}/sms/2/text/advanced"
    headers = {
        "Authorization": f"App {config['INFOBIP_API_KEY']}",
        "Content-Type": "application/json",
        "Accept": "application/json"
    }
    payload = {
        "messages": [
            {
                "from": config['SMS_SENDER'],
                "destinations": [{"to": phone}],
                "text": f"Your OTP code is {otp}. It expires in {config['OTP_EXPIRY_MINUTES']} minutes."
            }
        ]
    }

    try:
        response = requests.post(url, headers=headers, json=payload, timeout=10)
    except requests.RequestException:
        logger.exception("OTP SMS to %s failed", phone)
        return False

    if response.status_code != 200:
        logger.error("Failed to send OTP to %s: %s", phone, response.text)
        return False

    logger.info("OTP sent to %s", phone)
    return True


def deliver_otp(user, channel, otp):
    if channel == 'phone':
        return send_sms_infobip(user['phone_number'], otp)
    # email delivery is handled outside this service
    logger.info("OTP for user %s issued on the email channel", user['id'])
    return False


def find_user(cursor, identifier):
    cursor.execute("""
        SELECT id, email, phone_number
        FROM users
        WHERE email = %s OR phone_number = %s
    """, (identifier, identifier))
    return cursor.fetchone()


# ----------------------
# Forgot Password
# ----------------------
@blueprint.route('/forgot-password', methods=['POST'])
def forgot_password():
    body = request.get_json(silent=True) or {}
    identifier = (body.get('identifier') or body.get('email') or '').strip()

    if not identifier:
        return jsonify({'success': False, 'message': 'Email or phone number is required'}), 400

    try:
        with get_db_connection() as conn:
            with conn.cursor(dictionary=True) as cursor:
                user = find_user(cursor, identifier)

                if not user:
                    logger.info("Password reset requested for unknown account %s", identifier)
                    return jsonify({'success': True, 'message': GENERIC_RESET_MESSAGE})

                otp = generate_otp()
                channel = 'email' if identifier == user['email'] else 'phone'

                cursor.execute("""
                    INSERT INTO password_reset_otp (user_id, otp_code, channel, expires_at, attempts)
                    VALUES (%s, %s, %s, %s, %s)
                """, (user['id'], otp, channel, otp_expiry(current_app.config['OTP_EXPIRY_MINUTES']), 0))
                conn.commit()
    except mysql.connector.Error:
        logger.exception("Error in forgot password")
        return jsonify({'success': False, 'message': 'An error occurred while processing your request'}), 500

    deliver_otp(user, channel, otp)
    return jsonify({'success': True, 'message': GENERIC_RESET_MESSAGE})


# ----------------------
# Verify OTP
# ----------------------
@blueprint.route('/verify-otp', methods=['POST'])
def verify_otp():
    body = request.get_json(silent=True) or {}
    identifier = (body.get('identifier') or '').strip()
    otp_input = str(body.get('otp') or '').strip()

    if not identifier or not otp_input:
        return jsonify({'success': False, 'message': 'Identifier and OTP are required'}), 400

    try:
        with get_db_connection() as conn:
            with conn.cursor(dictionary=True) as cursor:
                user = find_user(cursor, identifier)
                record = None
                if user:
                    cursor.execute("""
                        SELECT * FROM password_reset_otp
                        WHERE user_id = %s
                        ORDER BY created_at DESC
                        LIMIT 1
                    """, (user['id'],))
                    record = cursor.fetchone()

                if not record:
                    return jsonify({'success': False, 'message': 'Invalid OTP.'}), 400

                if record['attempts'] >= current_app.config['OTP_MAX_ATTEMPTS']:
                    return jsonify({'success': False, 'message': 'Too many failed attempts.'}), 400

                if otp_expired(record['expires_at']):
                    return jsonify({'success': False, 'message': 'OTP expired.'}), 400

                if otp_input != record['otp_code']:
                    cursor.execute("""
                        UPDATE password_reset_otp
                        SET attempts = attempts + 1
                        WHERE id = %s
                    """, (record['id'],))
                    conn.commit()
                    return jsonify({'success': False, 'message': 'Invalid OTP.'}), 400

                # a code is good for one reset only
                cursor.execute("DELETE FROM password_reset_otp WHERE user_id = %s", (user['id'],))
                conn.commit()
    except mysql.connector.Error:
        logger.exception("Error verifying OTP")
        return jsonify({'success': False, 'message': 'An error occurred while verifying the OTP'}), 500

    try:
        token = TokenService.create_token('PASSWORD_RESET', identifier, {'userId': user['id']})
    except RuntimeError:
        logger.exception("Could not issue reset token for user %s", user['id'])
        return jsonify({'success': False, 'message': 'Password reset is temporarily unavailable'}), 503

    return jsonify({'success': True, 'message': 'OTP verified.', 'token': token})


# ----------------------
# Reset Password
# ----------------------
@blueprint.route('/reset-password', methods=['GET'])
def check_reset_token():
    token = request.args.get('token')
    if not token:
        return jsonify({'success': False, 'message': 'Token is required'}), 400

    token_data = TokenService.verify_token('PASSWORD_RESET', token)
    if not token_data:
        return jsonify({'success': False, 'message': 'Invalid or expired token'}), 400

    return jsonify({'success': True, 'identifier': token_data['identifier']})


@blueprint.route('/reset-password', methods=['POST'])
def reset_password():
    body = request.get_json(silent=True) or {}
    token = body.get('token')
    password = body.get('password') or ''

    if not token or not password:
        return jsonify({'success': False, 'message': 'Token and password are required'}), 400

    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({
            'success': False,
            'message': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'
        }), 400

    token_data = TokenService.verify_token('PASSWORD_RESET', token)
    if not token_data:
        return jsonify({'success': False, 'message': 'Invalid or expired token'}), 400

    user_id = token_data['userId']
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    "UPDATE users SET password = %s, updated_at = NOW() WHERE id = %s",
                    (hash_password(password), user_id)
                )
                # sign the user out everywhere
                cursor.execute("DELETE FROM sessions WHERE user_id = %s", (user_id,))
                conn.commit()
    except mysql.connector.Error:
        logger.exception("Error resetting password")
        return jsonify({'success': False, 'message': 'An error occurred while resetting the password'}), 500

    TokenService.invalidate_token('PASSWORD_RESET', token)
    logger.info("Password reset for user %s", user_id)
    return jsonify({'success': True, 'message': 'Password has been reset successfully'})
