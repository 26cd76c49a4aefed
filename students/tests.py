from django.contrib.auth import get_user_model
from django.test import TestCase

from academics.models import Class
from students.models import Student

User = get_user_model()


class StudentModelTests(TestCase):
    """Tests for the Student model."""

    def setUp(self):
        self.klass = Class.objects.create(level_type='primary', level_number=6, section='A')
        self.parent = User.objects.create_parent('parent@school.com', 'pass123')

    def test_full_name(self):
        student = Student.objects.create(
            first_name='Ama',
            last_name='Boateng',
            other_names='Serwaa',
            admission_number='ADM001',
        )
        self.assertEqual(student.full_name, 'Ama Serwaa Boateng')
        self.assertEqual(str(student), 'Ama Serwaa Boateng (ADM001)')

    def test_defaults(self):
        student = Student.objects.create(first_name='Kofi', last_name='Asante', admission_number='ADM002')
        self.assertEqual(student.status, Student.Status.ACTIVE)
        self.assertTrue(student.is_active)
        self.assertIsNone(student.current_class)

    def test_guardian_wards(self):
        first = Student.objects.create(
            first_name='Kofi', last_name='Asante', admission_number='ADM002',
            current_class=self.klass, guardian=self.parent,
        )
        second = Student.objects.create(
            first_name='Esi', last_name='Asante', admission_number='ADM003',
            current_class=self.klass, guardian=self.parent,
        )
        self.assertEqual(set(self.parent.wards.all()), {first, second})
        self.assertEqual(set(self.klass.students.all()), {first, second})
