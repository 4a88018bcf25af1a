from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from samplechain.extensions import db
from samplechain.utils import utcnow


class User(UserMixin, db.Model):
    """User model representing application users.

    Inherits from:
        UserMixin: Provides default implementations for Flask-Login interface
        db.Model: SQLAlchemy model base class
    """
    __tablename__ = 'user'

    ROLES = ('requester', 'lab_staff', 'logistics', 'admin')
    FULFILLMENT_ROLES = ('lab_staff', 'logistics', 'admin')

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    full_name = db.Column(db.String(120))
    password_hash = db.Column(db.String(256))
    role = db.Column(
        db.String(20),
        nullable=False,
        default='requester'
    )  # requester, lab_staff, logistics, admin
    created_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utcnow
    )
    last_login = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def set_password(self, password):
        """Set user's password hash from plain text password.

        Args:
            password: Plain text password to hash
        """
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Check if plain text password matches hash.

        Args:
            password: Plain text password to verify

        Returns:
            bool: True if password matches, False otherwise
        """
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def is_admin(self):
        return self.role == 'admin'

    def has_role(self, *roles):
        """Check if user holds any of the given roles.

        Admins implicitly hold every role.
        """
        return self.role in roles or self.is_admin()

    def can_fulfill(self):
        """Lab staff, logistics and admins may advance shipments."""
        return self.role in self.FULFILLMENT_ROLES

    def update_last_login(self):
        """Update user's last login timestamp to current time."""
        self.last_login = utcnow()
        db.session.commit()

    @property
    def display_name(self):
        return self.full_name or self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'name': self.display_name,
        }

    def __repr__(self):
        return f'<User {self.username}>'
