"""Database models for the SQL-backed profile and credential stores."""

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, \
    UniqueConstraint
from sqlalchemy.orm import relationship

db: SQLAlchemy = SQLAlchemy()


class DBAccount(db.Model):  # type: ignore
    """
    Application-level account record.

    +--------------+--------------+------+-----+
    | Field        | Type         | Null | Key |
    +--------------+--------------+------+-----+
    | account_id   | varchar(64)  | NO   | PRI |
    | email        | varchar(255) | YES  |     |
    | handle       | varchar(30)  | NO   | UNI |
    | display_name | varchar(255) | NO   |     |
    | tier         | varchar(16)  | NO   |     |
    | photo_ref    | varchar(512) | YES  |     |
    | verified_at  | datetime     | YES  |     |
    | created_at   | datetime     | NO   |     |
    +--------------+--------------+------+-----+
    """

    __tablename__ = 'camper_accounts'

    account_id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True)
    handle = Column(String(30), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False, default='')
    tier = Column(String(16), nullable=False, default='free')
    photo_ref = Column(String(512), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class DBEmailIndex(db.Model):  # type: ignore
    """Maps a normalized e-mail address to the account that claimed it."""

    __tablename__ = 'camper_email_index'

    email = Column(String(255), primary_key=True)
    account_id = Column(ForeignKey('camper_accounts.account_id'),
                        nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class DBCredential(db.Model):  # type: ignore
    """Identity-provider side of an account."""

    __tablename__ = 'camper_credentials'

    account_id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    password_enc = Column(String(255), nullable=True)
    email_verified = Column(Integer, nullable=False, default=0)
    verification_sent_at = Column(DateTime(timezone=True), nullable=True)
    session_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    bindings = relationship('DBCredentialBinding', back_populates='credential')


class DBCredentialBinding(db.Model):  # type: ignore
    """One provider subject bound to one account."""

    __tablename__ = 'camper_credential_bindings'
    __table_args__ = (
        UniqueConstraint('provider', 'subject_id',
                         name='uq_binding_provider_subject'),
        UniqueConstraint('provider', 'email', name='uq_binding_provider_email'),
        UniqueConstraint('account_id', 'provider',
                         name='uq_binding_account_provider'),
    )

    binding_id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(ForeignKey('camper_credentials.account_id'),
                        nullable=False, index=True)
    provider = Column(String(64), nullable=False)
    subject_id = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    credential = relationship('DBCredential', back_populates='bindings')
