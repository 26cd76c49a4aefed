"""
Tests for academics models.

Covers:
- Class name generation per level type
- Supervisor assignment lookups on ClassSubject
"""
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import TestCase

from academics.models import Class, ClassSubject, Subject

User = get_user_model()


class ClassModelTests(TestCase):
    """Tests for Class name generation."""

    def test_kg_name(self):
        self.assertEqual(Class.objects.create(level_type='kg', level_number=1, section='A').name, 'KG1-A')

    def test_primary_name(self):
        self.assertEqual(Class.objects.create(level_type='primary', level_number=4, section='B').name, 'B4-B')

    def test_jhs_name_continues_basic_numbering(self):
        self.assertEqual(Class.objects.create(level_type='jhs', level_number=2, section='A').name, 'B8-A')

    def test_shs_name(self):
        klass = Class.objects.create(level_type='shs', level_number=3, section='C')
        self.assertEqual(klass.name, 'SHS3-C')
        self.assertEqual(str(klass), 'SHS3-C')

    def test_unique_level_and_section(self):
        Class.objects.create(level_type='shs', level_number=1, section='A')
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Class.objects.create(level_type='shs', level_number=1, section='A')


class ClassSubjectModelTests(TestCase):
    """Tests for supervisor assignments."""

    def setUp(self):
        self.klass = Class.objects.create(level_type='jhs', level_number=1, section='A')
        self.other_class = Class.objects.create(level_type='jhs', level_number=1, section='B')
        self.subject = Subject.objects.create(name='English Language', short_name='ENG')
        self.teacher = User.objects.create_teacher('teacher@school.com', 'pass123')
        self.allocation = ClassSubject.objects.create(
            class_assigned=self.klass, subject=self.subject, supervisor=self.teacher
        )

    def test_str(self):
        self.assertEqual(str(self.allocation), 'English Language - B7-A')

    def test_is_assigned(self):
        self.assertTrue(ClassSubject.is_assigned(self.teacher, self.klass, self.subject))
        self.assertTrue(ClassSubject.is_assigned(self.teacher, self.klass.pk, self.subject.pk))

    def test_not_assigned_to_other_class(self):
        self.assertFalse(ClassSubject.is_assigned(self.teacher, self.other_class, self.subject))

    def test_unassigned_supervisor(self):
        self.allocation.supervisor = None
        self.allocation.save()
        self.assertFalse(ClassSubject.is_assigned(self.teacher, self.klass, self.subject))
