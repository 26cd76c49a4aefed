from datetime import date

from django.test import TestCase
from django.contrib.auth import get_user_model

from core.models import AcademicYear, Term

User = get_user_model()


class AcademicYearModelTests(TestCase):
    """Tests for the AcademicYear model."""

    def _create_year(self, **kwargs):
        defaults = {
            'name': '2024/2025',
            'start_date': date(2024, 9, 1),
            'end_date': date(2025, 7, 31),
            'is_current': False,
        }
        defaults.update(kwargs)
        return AcademicYear.objects.create(**defaults)

    def test_create_academic_year(self):
        ay = self._create_year()
        self.assertEqual(str(ay), '2024/2025')

    def test_only_one_current(self):
        ay1 = self._create_year(is_current=True)
        ay2 = self._create_year(
            name='2025/2026',
            start_date=date(2025, 9, 1),
            end_date=date(2026, 7, 31),
            is_current=True,
        )
        ay1.refresh_from_db()
        self.assertFalse(ay1.is_current)
        self.assertTrue(ay2.is_current)

    def test_get_current_none(self):
        self.assertIsNone(AcademicYear.get_current())


class TermModelTests(TestCase):
    """Tests for the Term model."""

    def setUp(self):
        self.ay = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )

    def _create_term(self, **kwargs):
        defaults = {
            'academic_year': self.ay,
            'name': 'First Term',
            'term_number': 1,
            'start_date': date(2024, 9, 1),
            'end_date': date(2024, 12, 20),
            'is_current': False,
        }
        defaults.update(kwargs)
        return Term.objects.create(**defaults)

    def test_create_term(self):
        term = self._create_term()
        self.assertEqual(str(term), 'First Term - 2024/2025')

    def test_only_one_current_term(self):
        t1 = self._create_term(is_current=True)
        t2 = self._create_term(
            name='Second Term',
            term_number=2,
            start_date=date(2025, 1, 6),
            end_date=date(2025, 4, 15),
            is_current=True,
        )
        t1.refresh_from_db()
        self.assertFalse(t1.is_current)
        self.assertEqual(Term.get_current(), t2)

    def test_lock_and_unlock_grades(self):
        term = self._create_term()
        user = User.objects.create_school_admin(email='admin@test.com', password='pass')
        term.lock_grades(user)
        term.refresh_from_db()
        self.assertTrue(term.grades_locked)
        self.assertIsNotNone(term.grades_locked_at)
        self.assertEqual(term.grades_locked_by, user)

        term.unlock_grades()
        term.refresh_from_db()
        self.assertFalse(term.grades_locked)
        self.assertIsNone(term.grades_locked_by)
