"""Tests for :mod:`camper.identity.handles`."""

from unittest import TestCase

from hypothesis import given
from hypothesis import strategies as st

from .. import handles


class TestNormalize(TestCase):
    """Normalizing requested handles."""

    def test_normalize(self):
        """Case, a leading @ and disallowed characters are dropped."""
        self.assertEqual(handles.normalize('@Camper_One!'), 'camper_one')
        self.assertEqual(handles.normalize('  Trail Blazer 42 '),
                         'trailblazer42')
        self.assertEqual(handles.normalize(None), '')
        self.assertEqual(handles.normalize('!!!'), '')

    def test_truncate(self):
        """Handles are at most thirty characters long."""
        self.assertEqual(len(handles.normalize('a' * 50)), handles.MAX_LENGTH)

    @given(st.text())
    def test_normalized_shape(self, raw):
        """Anything normalizes to a short lowercase slug."""
        value = handles.normalize(raw)
        self.assertLessEqual(len(value), handles.MAX_LENGTH)
        self.assertRegex(value, r'^[a-z0-9_]*$')

    @given(st.text())
    def test_idempotent(self, raw):
        """Normalizing twice changes nothing."""
        once = handles.normalize(raw)
        self.assertEqual(handles.normalize(once), once)


class TestFallback(TestCase):
    """Deriving a handle when none was requested."""

    def test_from_display_name(self):
        """The display name is used when it leaves anything behind."""
        self.assertEqual(handles.fallback('Happy Camper', 'u1'),
                         'happycamper')

    def test_from_account_id(self):
        """Otherwise a number is derived from the account ID."""
        value = handles.fallback('!!', 'u1')
        self.assertRegex(value, r'^camper\d{4,6}$')
        self.assertEqual(value, handles.fallback(None, 'u1'))

    def test_alternatives(self):
        """Alternatives add the account's number, then drop the name."""
        number = handles.camper_number('u1')
        self.assertEqual(handles.fallbacks('Happy Camper', 'u1'),
                         ['happycamper', f'happycamper{number}',
                          f'camper{number}'])
        self.assertEqual(handles.fallbacks(None, 'u1'), [f'camper{number}'])

    @given(st.text(), st.text(min_size=1))
    def test_alternatives_are_distinct(self, display_name, account_id):
        """Alternatives are distinct, and never too long."""
        values = handles.fallbacks(display_name, account_id)
        self.assertEqual(len(values), len(set(values)))
        self.assertTrue(all(len(v) <= handles.MAX_LENGTH for v in values))

    @given(st.text(min_size=1))
    def test_deterministic(self, account_id):
        """The same account always gets the same number."""
        self.assertEqual(handles.camper_number(account_id),
                         handles.camper_number(account_id))

    def test_blank_seed(self):
        """A blank seed gets zeros."""
        self.assertEqual(handles.camper_number('  '), '0000')


class TestDisplay(TestCase):
    """Rendering handles for attribution."""

    def test_valid_handles(self):
        """Chosen-looking handles are accepted."""
        self.assertTrue(handles.is_valid_handle('camper1'))
        self.assertTrue(handles.is_valid_handle('trail_mix'))
        self.assertTrue(handles.is_valid_handle('wanderer'))
        self.assertTrue(handles.is_valid_handle('hiker'))

    def test_invalid_handles(self):
        """Names, placeholders and blanks are not handles."""
        self.assertFalse(handles.is_valid_handle(''))
        self.assertFalse(handles.is_valid_handle('Sarah'))
        self.assertFalse(handles.is_valid_handle('user123'))
        self.assertFalse(handles.is_valid_handle('two words'))
        self.assertFalse(handles.is_valid_handle('abc'))

    def test_display(self):
        """Valid handles are shown as-is, others as a camper number."""
        self.assertEqual(handles.display_handle('camper1', 'u1'), '@camper1')
        self.assertEqual(handles.display_handle('@camper1', 'u1'), '@camper1')
        fallback = handles.display_handle('sarah', 'u1')
        self.assertEqual(fallback, f'@Camper{handles.camper_number("u1")}')
        self.assertEqual(handles.display_handle(None, None), '@Camper0000')
