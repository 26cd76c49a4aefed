from io import StringIO

from django.test import TestCase
from django.contrib.auth import get_user_model
from django.core.management import call_command

User = get_user_model()


class UserManagerTests(TestCase):
    """Tests for the custom UserManager."""

    def test_create_user(self):
        """Test creating a regular user with email."""
        user = User.objects.create_user(
            email='test@example.com',
            password='testpass123'
        )
        self.assertEqual(user.email, 'test@example.com')
        self.assertTrue(user.check_password('testpass123'))
        self.assertFalse(user.is_results_admin)
        self.assertFalse(user.is_supervisor)

    def test_create_user_without_email_raises_error(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='testpass123')

    def test_create_school_admin(self):
        """School admins can manage results."""
        user = User.objects.create_school_admin(
            email='principal@school.com',
            password='schoolpass123'
        )
        self.assertTrue(user.is_school_admin)
        self.assertTrue(user.is_results_admin)
        self.assertFalse(user.is_supervisor)

    def test_create_teacher_is_supervisor(self):
        user = User.objects.create_teacher(
            email='teacher@school.com',
            password='teacherpass123'
        )
        self.assertTrue(user.is_supervisor)
        self.assertFalse(user.is_results_admin)

    def test_inactive_admin_cannot_manage_results(self):
        user = User.objects.create_school_admin(
            email='former@school.com',
            password='schoolpass123',
            is_active=False
        )
        self.assertFalse(user.is_results_admin)

    def test_superuser_is_results_admin(self):
        user = User.objects.create_superuser(
            email='owner@example.com',
            password='adminpass123'
        )
        self.assertTrue(user.is_results_admin)


class UserModelTests(TestCase):
    """Tests for the User model."""

    def test_user_str_returns_email(self):
        user = User.objects.create_user(
            email='test@example.com',
            password='testpass123'
        )
        self.assertEqual(str(user), 'test@example.com')

    def test_role_labels(self):
        """role_label reflects the most privileged flag."""
        cases = [
            (User.objects.create_school_admin('a@school.com', 'x'), 'School Admin'),
            (User.objects.create_teacher('t@school.com', 'x'), 'Supervisor'),
            (User.objects.create_student('s@school.com', 'x'), 'Student'),
            (User.objects.create_parent('p@school.com', 'x'), 'Parent'),
            (User.objects.create_user('u@school.com', 'x'), 'User'),
        ]
        for user, label in cases:
            self.assertEqual(user.role_label, label)


class MigrationTests(TestCase):
    """Hand-written migrations must match the models."""

    def test_no_pending_migrations(self):
        out = StringIO()
        try:
            call_command('makemigrations', '--check', '--dry-run', stdout=out)
        except SystemExit:
            self.fail(f"Models have changes without migrations:\n{out.getvalue()}")
