"""Tests for :mod:`camper.identity.stores.util`."""

from unittest import TestCase, mock

from sqlalchemy.exc import DatabaseError, IntegrityError, InterfaceError, \
    OperationalError

from ... import domain
from .. import exceptions, profiles, util
from .util import temporary_db


def _driver_error(cls, message):
    return cls('SELECT 1', {}, Exception(message))


class TestUnavailableOnError(TestCase):
    """Driver errors become store errors."""

    def _raise(self, error):
        with util.unavailable_on_error():
            raise error

    def test_dropped_connection(self):
        """Interface and database errors are outages."""
        for cls in (InterfaceError, DatabaseError):
            with self.assertRaises(exceptions.Unavailable):
                self._raise(_driver_error(cls, 'connection closed'))

    def test_timeout(self):
        """Timed-out calls are timeouts."""
        with self.assertRaises(exceptions.StoreTimeout):
            self._raise(_driver_error(OperationalError, 'Lock wait timeout'))

    def test_integrity_error(self):
        """Constraint violations are left for the caller to classify."""
        with self.assertRaises(IntegrityError):
            self._raise(_driver_error(IntegrityError, 'UNIQUE failed'))

    def test_store_read(self):
        """A store read on a dropped connection is an outage."""
        with temporary_db():
            store = profiles.SQLProfileStore()
            error = _driver_error(InterfaceError, 'connection closed')
            with mock.patch.object(util, 'transaction', side_effect=error):
                with self.assertRaises(exceptions.Unavailable):
                    store.get('u1')


class TestTransaction(TestCase):
    """Rolling back failed transactions."""

    def test_expected_conflict(self):
        """Handle conflicts are not logged as errors."""
        with temporary_db():
            store = profiles.SQLProfileStore()
            store.create_if_absent('u1', domain.Account(
                'u1', 'a@x.com', 'camper1', 'Alana'
            ))
            with mock.patch.object(util.logger, 'error') as mock_error:
                with self.assertRaises(exceptions.HandleConflict):
                    store.create_if_absent('u2', domain.Account(
                        'u2', 'b@x.com', 'camper1', 'Bo'
                    ))
            mock_error.assert_not_called()

    def test_unexpected_error(self):
        """Anything else is logged as an error and rolled back."""
        with temporary_db():
            with mock.patch.object(util.logger, 'error') as mock_error:
                with self.assertRaises(RuntimeError):
                    with util.transaction():
                        raise RuntimeError('boom')
            self.assertEqual(mock_error.call_count, 1)
