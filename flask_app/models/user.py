# flask_app/models/user.py

from flask import current_app
from flask_login import UserMixin
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from .base import BaseModel, db


class User(BaseModel, UserMixin):
    """Canonical account that legacy attendance identities are mapped onto."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_super_admin = db.Column(db.Boolean, default=False, nullable=False)

    legacy_attendance = db.relationship(
        "LegacyAttendanceRecord",
        back_populates="mapped_user",
        foreign_keys="LegacyAttendanceRecord.mapped_user_id",
    )

    def __repr__(self):
        return f"<User {self.username}>"

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.username

    @staticmethod
    def find_by_id(user_id):
        """Find user by ID with error handling"""
        try:
            return db.session.get(User, user_id)
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding user by id {user_id}: {str(e)}")
            return None

