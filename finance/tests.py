from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone

from academics.models import Class
from core.models import AcademicYear, Term
from finance.models import FeeStructure, Payment
from students.models import Student

User = get_user_model()


class FinanceTestBase(TestCase):
    """Base class with common setup for finance tests."""

    def setUp(self):
        self.ay = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )
        self.term = Term.objects.create(
            academic_year=self.ay,
            name='First Term',
            term_number=1,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 20),
            is_current=True,
        )
        self.other_term = Term.objects.create(
            academic_year=self.ay,
            name='Second Term',
            term_number=2,
            start_date=date(2025, 1, 6),
            end_date=date(2025, 4, 10),
        )
        self.klass = Class.objects.create(level_type='shs', level_number=1, section='A')
        self.other_class = Class.objects.create(level_type='shs', level_number=2, section='A')
        self.primary_class = Class.objects.create(level_type='primary', level_number=4, section='B')
        self.student = Student.objects.create(
            first_name='Kwame',
            last_name='Mensah',
            gender='M',
            admission_number='STU-2024-001',
            current_class=self.klass,
        )
        self.admin = User.objects.create_school_admin(
            email='admin@school.com', password='pass123'
        )

    def fee(self, amount, **kwargs):
        defaults = {'category': 'TUITION', 'academic_year': self.ay, 'term': self.term}
        defaults.update(kwargs)
        return FeeStructure.objects.create(amount=Decimal(amount), **defaults)


class FeeStructureModelTests(FinanceTestBase):
    """Tests for the FeeStructure model."""

    def test_create_fee_structure(self):
        fee = self.fee('500.00')
        self.assertIn('Tuition', str(fee))
        self.assertIn('500', str(fee))

    def test_get_applies_to_all_classes(self):
        self.assertEqual(self.fee('500.00').get_applies_to_display(), 'All Classes')

    def test_get_applies_to_level_type(self):
        fee = self.fee('1000.00', category='BOARDING', level_type='shs')
        self.assertEqual(fee.get_applies_to_display(), 'SHS')

    def test_get_applies_to_class(self):
        fee = self.fee('1000.00', class_assigned=self.klass)
        self.assertEqual(fee.get_applies_to_display(), self.klass.name)

    def test_required_total_prefers_class(self):
        self.fee('800.00', class_assigned=self.klass)
        self.fee('150.00', class_assigned=self.klass, category='PTA')
        self.fee('600.00', level_type='shs')
        self.fee('400.00')
        self.assertEqual(FeeStructure.required_total(self.klass, self.ay, self.term), Decimal('950.00'))

    def test_required_total_falls_back_to_level(self):
        self.fee('800.00', class_assigned=self.klass)
        self.fee('600.00', level_type='shs')
        self.fee('400.00')
        self.assertEqual(FeeStructure.required_total(self.other_class, self.ay, self.term), Decimal('600.00'))

    def test_required_total_falls_back_to_all_levels(self):
        self.fee('600.00', level_type='shs')
        self.fee('400.00')
        self.assertEqual(FeeStructure.required_total(self.primary_class, self.ay, self.term), Decimal('400.00'))

    def test_required_total_includes_full_year_fees(self):
        self.fee('500.00', class_assigned=self.klass)
        self.fee('120.00', class_assigned=self.klass, term=None, category='PTA')
        self.fee('999.00', class_assigned=self.klass, term=self.other_term)
        self.assertEqual(FeeStructure.required_total(self.klass, self.ay, self.term), Decimal('620.00'))

    def test_required_total_ignores_inactive(self):
        self.fee('500.00', class_assigned=self.klass, is_active=False)
        self.assertEqual(FeeStructure.required_total(self.klass, self.ay, self.term), Decimal('0.00'))

    def test_required_total_without_class(self):
        self.fee('400.00')
        self.assertEqual(FeeStructure.required_total(None, self.ay, self.term), Decimal('0.00'))


class PaymentModelTests(FinanceTestBase):
    """Tests for the Payment model."""

    def pay(self, amount, **kwargs):
        defaults = {'student': self.student, 'academic_year': self.ay, 'term': self.term}
        defaults.update(kwargs)
        return Payment.objects.create(amount=Decimal(amount), **defaults)

    def test_receipt_number_generated(self):
        first = self.pay('100.00')
        second = self.pay('50.00')
        year = timezone.now().year
        self.assertEqual(first.receipt_number, f'RCP-{year}-00001')
        self.assertEqual(second.receipt_number, f'RCP-{year}-00002')

    def test_default_status_pending(self):
        payment = self.pay('100.00')
        self.assertEqual(payment.status, 'PENDING')
        self.assertIsNone(payment.confirmed_by)

    def test_approve(self):
        payment = self.pay('100.00')
        payment.approve(self.admin)
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'APPROVED')
        self.assertEqual(payment.confirmed_by, self.admin)
        self.assertIsNotNone(payment.confirmed_at)

    def test_reject_with_notes(self):
        payment = self.pay('100.00')
        payment.reject(self.admin, notes='Reference not found')
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'REJECTED')
        self.assertEqual(payment.notes, 'Reference not found')

    def test_approved_total(self):
        self.pay('300.00').approve(self.admin)
        self.pay('200.00').approve(self.admin)
        self.pay('1000.00')
        self.pay('500.00').reject(self.admin)
        self.pay('700.00', term=self.other_term).approve(self.admin)
        self.assertEqual(Payment.approved_total(self.student, self.ay, self.term), Decimal('500.00'))

    def test_approved_total_none(self):
        self.assertEqual(Payment.approved_total(self.student, self.ay, self.term), Decimal('0.00'))
