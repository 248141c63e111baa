from bingo import db
from flask import current_app
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

# The whole game room lives in a single row under this key
SINGLETON_ID = 'singleton'


def hash_password(password):
    return generate_password_hash(password, method=current_app.config.get('PASSWORD_HASH_METHOD', 'pbkdf2:sha256'))


class GameStateRecord(db.Model):
    __tablename__ = 'game_state'
    id = db.Column(db.String(32), primary_key=True)
    # Bumped on every committed write; used as the compare-and-swap token
    version = db.Column(db.Integer, nullable=False, default=1)
    state = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.Float, nullable=True)


class Account(UserMixin):
    """A registered player as seen by Flask-Login.

    Accounts are entries of the shared state's ``users`` list, not rows of
    their own, so this is a plain object rebuilt from the latest snapshot.
    """

    def __init__(self, name, pix_key=None, password_hash=None, is_caller=False):
        self.name = name
        self.pix_key = pix_key
        self.password_hash = password_hash
        self.is_caller = is_caller

    def get_id(self):
        return self.name

    def check_password(self, password):
        if not self.password_hash or not isinstance(password, str):
            return False
        return check_password_hash(self.password_hash, password)

    @classmethod
    def from_state(cls, state, name, caller_name=None):
        for user in state.get('users', []):
            if user.get('name') == name:
                return cls(
                    name=user['name'],
                    pix_key=user.get('pix_key'),
                    password_hash=user.get('password_hash'),
                    is_caller=(caller_name is not None and user['name'] == caller_name),
                )
        return None

    def to_dict(self):
        return {
            'name': self.name,
            'pix_key': self.pix_key,
            'is_caller': self.is_caller,
        }
