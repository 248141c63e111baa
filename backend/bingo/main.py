from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from functools import partial
from bingo.models import Account, hash_password
from bingo.services.game.lease import release_lease
from bingo.services.game.roster import mark_offline, mark_online, register_user
from bingo.services.game.store import store

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the bingo room!'})

@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    fields = [data.get(key) or '' for key in ('name', 'password', 'pix_key')]
    if not all(isinstance(value, str) for value in fields):
        return jsonify({'error': 'Name, password and pix key must be text'}), 400
    name, password, pix_key = fields
    name = name.strip()
    pix_key = pix_key.strip()
    if not all([name, password.strip(), pix_key]):
        return jsonify({'error': 'Name, password and pix key are required'}), 400

    password_hash = hash_password(password)
    committed = store.update(partial(register_user, name=name, password_hash=password_hash, pix_key=pix_key))
    if committed is None:
        return jsonify({'error': 'Username already exists'}), 400

    account = Account.from_state(committed, name, current_app.config.get('CALLER_NAME'))
    login_user(account, remember=True)
    store.update(partial(mark_online, name=name))
    return jsonify({'message': 'Account created successfully', 'user': account.to_dict()}), 201

@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    account = Account.from_state(store.refresh(), data.get('name'), current_app.config.get('CALLER_NAME'))
    if account and account.check_password(data.get('password') or ''):
        login_user(account, remember=True)
        store.update(partial(mark_online, name=account.name))
        return jsonify({'message': 'Logged in successfully.', 'user': account.to_dict()})
    return jsonify({'error': 'Invalid name or password'}), 401

@main.route('/check_login', methods=['GET'])
@login_required
def check_login():
    return jsonify({'success': True, 'user': current_user.to_dict()})

@main.route('/logout', methods=['POST'])
@login_required
def logout():
    store.update(partial(mark_offline, name=current_user.name))
    if current_user.is_caller:
        # Frees the draws for another caller session
        store.update(partial(release_lease, holder=store.session_id))
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})
