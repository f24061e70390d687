"""Account records in the SQL database."""

from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError

from .. import domain
from . import util
from .base import ProfileStore
from .exceptions import AccountConflict, EmailConflict, HandleConflict, \
    NoSuchAccount, StoreError
from .models import DBAccount, DBEmailIndex

logger = logging.getLogger(__name__)


class SQLProfileStore(ProfileStore):
    """
    Profile store backed by the ``camper_accounts`` table.

    Uniqueness of ``handle`` is enforced by the database. Creating a record
    also claims the account's e-mail address in ``camper_email_index`` within
    the same transaction, so a record and its e-mail claim are written
    together or not at all.
    """

    def create_if_absent(self, account_id: str,
                         record: domain.Account) -> domain.Account:
        """
        Create the account record.

        Raises
        ------
        :class:`.AccountConflict`
            A record already exists for ``account_id``.
        :class:`.HandleConflict`
            Another record holds the handle.
        :class:`.EmailConflict`
            Another account has claimed the e-mail address.
        :class:`.Unavailable`
            The database could not be reached.

        """
        email = util.normalize_email(record.email)
        created_at = record.created_at or util.now()
        with util.unavailable_on_error():
            try:
                with util.transaction() as session:
                    existing = session.query(DBAccount) \
                        .filter(DBAccount.account_id == account_id) \
                        .first()
                    if existing is not None:
                        raise AccountConflict(f'{account_id} already exists')

                    claim = None
                    if email is not None:
                        claim = session.query(DBEmailIndex) \
                            .filter(DBEmailIndex.email == email) \
                            .first()
                        if claim is not None and claim.account_id != account_id:
                            raise EmailConflict('Email is claimed')

                    session.add(DBAccount(
                        account_id=account_id,
                        email=email,
                        handle=record.handle,
                        display_name=record.display_name,
                        tier=record.tier,
                        photo_ref=record.photo_ref,
                        verified_at=record.verified_at,
                        created_at=created_at
                    ))
                    if email is not None and claim is None:
                        session.add(DBEmailIndex(
                            email=email,
                            account_id=account_id,
                            created_at=created_at
                        ))
                    session.commit()
            except IntegrityError as e:
                conflict = self._classify_conflict(account_id, record.handle,
                                                   email)
                logger.info('Record for %s not created: %s', account_id,
                            conflict)
                raise conflict from e
        logger.info('Created account record %s', account_id)
        created = self.get(account_id)
        if created is None:
            raise StoreError(f'Record {account_id} missing after create')
        return created

    def _classify_conflict(self, account_id: str, handle: str,
                           email: Optional[str]) -> Exception:
        """Work out which uniqueness constraint a failed write violated."""
        with util.transaction() as session:
            if session.query(DBAccount) \
                    .filter(DBAccount.account_id == account_id).first():
                return AccountConflict(f'{account_id} already exists')
            if session.query(DBAccount) \
                    .filter(DBAccount.handle == handle).first():
                return HandleConflict(f'Handle {handle} is taken')
            if email is not None:
                claim = session.query(DBEmailIndex) \
                    .filter(DBEmailIndex.email == email).first()
                if claim is not None and claim.account_id != account_id:
                    return EmailConflict('Email is claimed')
        return AccountConflict('Uniqueness constraint violated')

    def get(self, account_id: str) -> Optional[domain.Account]:
        """Load the record for ``account_id``."""
        with util.unavailable_on_error():
            with util.transaction() as session:
                db_account = session.query(DBAccount) \
                    .filter(DBAccount.account_id == account_id) \
                    .first()
                if db_account is None:
                    return None
                return _to_domain(db_account)

    def mark_verified(self, account_id: str, when: datetime) -> None:
        """Stamp the verification time, leaving any earlier stamp in place."""
        with util.unavailable_on_error():
            with util.transaction() as session:
                db_account = session.query(DBAccount) \
                    .filter(DBAccount.account_id == account_id) \
                    .first()
                if db_account is None:
                    raise NoSuchAccount(f'No record for {account_id}')
                if db_account.verified_at is None:
                    db_account.verified_at = when
                    session.add(db_account)

    def handle_exists(self, handle: str) -> bool:
        """Determine whether any record already holds ``handle``."""
        with util.unavailable_on_error():
            with util.transaction() as session:
                data = session.query(DBAccount) \
                    .filter(DBAccount.handle == handle) \
                    .first()
                return data is not None


def _to_domain(db_account: DBAccount) -> domain.Account:
    return domain.Account(
        account_id=db_account.account_id,
        email=db_account.email,
        handle=db_account.handle,
        display_name=db_account.display_name,
        tier=db_account.tier,
        verified_at=util.aware(db_account.verified_at),
        created_at=util.aware(db_account.created_at),
        photo_ref=db_account.photo_ref
    )
