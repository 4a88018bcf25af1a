from flask import current_app, jsonify, request
from flask_login import current_user, login_user, logout_user, login_required
from samplechain.auth import bp
from samplechain.auth.forms import LoginForm
from samplechain.models.user import User
from samplechain.extensions import limiter


@bp.route('/login', methods=['POST'])
@limiter.limit("5 per minute")  # Protect against brute force
def login():
    if current_user.is_authenticated:
        return jsonify({'user': current_user.to_dict()})

    form = LoginForm(formdata=None, data=request.get_json(silent=True) or {})
    if not form.validate():
        return jsonify({'error': 'validation_error', 'message': 'Invalid login request',
                        'details': form.errors}), 400

    user = User.query.filter_by(username=form.username.data).first()
    if user is None or not user.check_password(form.password.data) or not user.is_active:
        current_app.logger.warning(f'Failed login for {form.username.data}')
        return jsonify({'error': 'unauthorized', 'message': 'Invalid username or password'}), 401

    login_user(user, remember=form.remember_me.data)
    user.update_last_login()
    return jsonify({'user': user.to_dict()})


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out'})
