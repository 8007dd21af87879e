from flask import Blueprint

blueprint = Blueprint(
    'password_reset_blueprint',
    __name__,
    url_prefix='/api/auth'
)
