from datetime import timedelta
import logging

from flask import request, session, jsonify, current_app
from flask_wtf.csrf import generate_csrf
import mysql.connector

from apps import get_db_connection
from apps.authentication import blueprint
from apps.utils.dates import get_local_time_naive
from apps.utils.decorators import login_required
from apps.utils.passwords import verify_password, hash_password, is_legacy_hash, generate_token

logger = logging.getLogger(__name__)

USER_COLUMNS = 'id, first_name, last_name, email, phone_number, type, status'

PROGRAM_ROLES_QUERY = """
    SELECT upr.*, p.name AS program_name, p.code AS program_code,
        CASE
            WHEN upr.scope_type = 'region' THEN r.name
            WHEN upr.scope_type = 'district' THEN d.name
            WHEN upr.scope_type = 'school' THEN s.name
            ELSE NULL
        END AS scope_name
    FROM user_program_roles upr
    LEFT JOIN programs p ON upr.program_id = p.id
    LEFT JOIN regions r ON upr.scope_type = 'region' AND upr.scope_id = r.id
    LEFT JOIN districts d ON upr.scope_type = 'district' AND upr.scope_id = d.id
    LEFT JOIN schools s ON upr.scope_type = 'school' AND upr.scope_id = s.id
    WHERE upr.user_id = %s
"""


def fetch_program_roles(cursor, user_id):
    cursor.execute(PROGRAM_ROLES_QUERY, (user_id,))
    return cursor.fetchall()


@blueprint.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Token to send back in the X-CSRFToken header on state-changing requests."""
    return jsonify({'csrfToken': generate_csrf()})


@blueprint.route('/login', methods=['POST'])
def login():
    body = request.get_json(silent=True) or {}
    email = (body.get('email') or '').strip()
    password = body.get('password') or ''

    if not email or not password:
        return jsonify({'success': False, 'message': 'Email and password are required'}), 400

    try:
        with get_db_connection() as conn:
            with conn.cursor(dictionary=True) as cursor:
                cursor.execute(f"SELECT {USER_COLUMNS}, password FROM users WHERE email = %s", (email,))
                user = cursor.fetchone()

                if not user or not verify_password(password, user['password']):
                    logger.info("Failed login for %s", email)
                    return jsonify({'success': False, 'message': 'Invalid credentials'}), 401

                if user.get('status') == 'inactive':
                    return jsonify({
                        'success': False,
                        'message': 'Your account is inactive. Please contact an administrator.'
                    }), 403

                stored_hash = user.pop('password')
                if is_legacy_hash(stored_hash):
                    cursor.execute("UPDATE users SET password = %s WHERE id = %s",
                                   (hash_password(password), user['id']))

                user['programRoles'] = fetch_program_roles(cursor, user['id'])

                now = get_local_time_naive()
                session_token = generate_token()
                cursor.execute(
                    "INSERT INTO sessions (user_id, token, created_at, expires_at) VALUES (%s, %s, %s, %s)",
                    (user['id'], session_token, now,
                     now + timedelta(hours=current_app.config['SESSION_TTL_HOURS']))
                )
                cursor.execute("UPDATE users SET last_login = %s WHERE id = %s", (now, user['id']))
                conn.commit()

    except mysql.connector.Error:
        logger.exception("Login error")
        return jsonify({'success': False, 'message': 'An error occurred during login'}), 500

    session.clear()
    session.update({
        'loggedin': True,
        'id': user['id'],
        'token': session_token,
        'email': user['email'],
        'role': user.get('type'),
    })
    session.permanent = False

    logger.info("User %s logged in", user['id'])
    return jsonify({'success': True, 'message': 'Login successful', 'user': user})


@blueprint.before_app_request
def check_token_validity():
    """Drop sessions whose token was revoked or expired server side."""
    token = session.get('token')
    if not token:
        return

    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                cursor.execute(
                    "SELECT user_id FROM sessions WHERE token = %s AND expires_at > %s",
                    (token, get_local_time_naive())
                )
                result = cursor.fetchone()
    except mysql.connector.Error:
        # keep the session; routes that need the database report their own errors
        logger.exception("Could not check session token for user %s", session.get('id'))
        return

    if not result or result['user_id'] != session.get('id'):
        logger.info("Session token for user %s is no longer valid", session.get('id'))
        session.clear()


@blueprint.route('/logout', methods=['POST'])
def logout():
    token = session.get('token')

    if token:
        try:
            with get_db_connection() as connection:
                with connection.cursor() as cursor:
                    cursor.execute("DELETE FROM sessions WHERE token = %s", (token,))
                    connection.commit()
        except mysql.connector.Error:
            logger.exception("Logout error")
            return jsonify({'success': False, 'message': 'An error occurred during logout'}), 500

    session.clear()
    return jsonify({'success': True, 'message': 'Logged out successfully'})


@blueprint.route('/me', methods=['GET'])
@login_required
def me():
    try:
        with get_db_connection() as connection:
            with connection.cursor(dictionary=True) as cursor:
                cursor.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (session['id'],))
                user = cursor.fetchone()
                if user:
                    user['programRoles'] = fetch_program_roles(cursor, user['id'])
    except mysql.connector.Error:
        logger.exception("Error verifying authentication")
        return jsonify({'success': False, 'message': 'An error occurred while verifying authentication'}), 500

    if not user:
        session.clear()
        return jsonify({'success': False, 'message': 'User not found'}), 404

    return jsonify({'success': True, 'user': user})
