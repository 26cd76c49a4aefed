from django.db import models
from django.db.models import Q, Sum
from django.core.validators import MinValueValidator
from decimal import Decimal
from django.conf import settings
from django.utils import timezone
import uuid


class FeeStructure(models.Model):
    """Fee amounts for different classes/terms"""
    CATEGORY_CHOICES = [
        ('TUITION', 'Tuition/School Fees'),
        ('EXAM', 'Examination Fees'),
        ('PTA', 'PTA Dues'),
        ('ICT', 'ICT/Computer Lab'),
        ('LIBRARY', 'Library Fees'),
        ('BOARDING', 'Boarding Fees'),
        ('OTHER', 'Other Fees'),
    ]

    LEVEL_TYPE_CHOICES = [
        ('', 'All Levels'),
        ('kg', 'Kindergarten'),
        ('primary', 'Primary'),
        ('jhs', 'JHS'),
        ('shs', 'SHS'),
    ]

    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='TUITION')
    class_assigned = models.ForeignKey(
        'academics.Class',
        on_delete=models.CASCADE,
        related_name='fee_structures',
        null=True,
        blank=True,
        help_text="Leave blank to apply by level type"
    )
    level_type = models.CharField(
        max_length=10,
        choices=LEVEL_TYPE_CHOICES,
        blank=True,
        help_text="Apply to all classes of this level"
    )
    academic_year = models.ForeignKey(
        'core.AcademicYear',
        on_delete=models.CASCADE,
        related_name='fee_structures'
    )
    term = models.ForeignKey(
        'core.Term',
        on_delete=models.CASCADE,
        related_name='fee_structures',
        null=True,
        blank=True,
        help_text="Leave blank for full year fee"
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year', 'term', 'category']

    def __str__(self):
        return f"{self.get_category_display()} - {self.get_applies_to_display()} (GHS {self.amount})"

    def get_applies_to_display(self):
        if self.class_assigned:
            return self.class_assigned.name
        elif self.level_type:
            return self.get_level_type_display()
        return "All Classes"

    @classmethod
    def required_total(cls, class_assigned, academic_year, term):
        """
        Total fees required from a student in ``class_assigned`` for a term.

        Class-specific lines take precedence over level lines, which take
        precedence over lines for all levels. Lines without a term are full
        year fees and count towards every term.
        """
        if class_assigned is None:
            return Decimal('0.00')

        structures = cls.objects.filter(
            academic_year=academic_year,
            is_active=True,
        ).filter(Q(term=term) | Q(term__isnull=True))

        for scope in (
            Q(class_assigned=class_assigned),
            Q(class_assigned__isnull=True, level_type=class_assigned.level_type),
            Q(class_assigned__isnull=True, level_type=''),
        ):
            total = structures.filter(scope).aggregate(total=Sum('amount'))['total']
            if total:
                return total
        return Decimal('0.00')


class Payment(models.Model):
    """Fee payment records submitted by parents and confirmed by the bursary"""
    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('APPROVED', 'Approved'),
        ('REJECTED', 'Rejected'),
    ]

    METHOD_CHOICES = [
        ('CASH', 'Cash'),
        ('BANK_TRANSFER', 'Bank Transfer'),
        ('MOBILE_MONEY', 'Mobile Money'),
        ('CARD', 'Card Payment'),
        ('CHEQUE', 'Cheque'),
        ('ONLINE', 'Online Payment'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    receipt_number = models.CharField(max_length=50, unique=True)
    student = models.ForeignKey(
        'students.Student',
        on_delete=models.CASCADE,
        related_name='payments'
    )
    academic_year = models.ForeignKey(
        'core.AcademicYear',
        on_delete=models.PROTECT,
        related_name='payments'
    )
    term = models.ForeignKey(
        'core.Term',
        on_delete=models.PROTECT,
        related_name='payments'
    )

    # Payment details
    amount = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, default='CASH')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')
    reference = models.CharField(max_length=200, blank=True, help_text="Bank/Mobile money reference")
    transaction_date = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)

    # Confirmation
    confirmed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='confirmed_payments'
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['student', 'academic_year', 'term', 'status'], name='payment_fee_progress_idx'),
        ]

    def __str__(self):
        return f"{self.receipt_number} - {self.amount}"

    def save(self, *args, **kwargs):
        if not self.receipt_number:
            # Generate receipt number: RCP-YYYY-XXXXX
            year = timezone.now().year
            last_payment = Payment.objects.filter(
                receipt_number__startswith=f'RCP-{year}'
            ).order_by('-receipt_number').first()

            if last_payment:
                last_num = int(last_payment.receipt_number.split('-')[-1])
                new_num = last_num + 1
            else:
                new_num = 1

            self.receipt_number = f'RCP-{year}-{new_num:05d}'

        super().save(*args, **kwargs)

    def approve(self, user):
        """Confirm the payment so it counts towards fee progress."""
        self.status = 'APPROVED'
        self.confirmed_by = user
        self.confirmed_at = timezone.now()
        self.save(update_fields=['status', 'confirmed_by', 'confirmed_at', 'updated_at'])

    def reject(self, user, notes=''):
        self.status = 'REJECTED'
        self.confirmed_by = user
        self.confirmed_at = timezone.now()
        if notes:
            self.notes = notes
        self.save(update_fields=['status', 'confirmed_by', 'confirmed_at', 'notes', 'updated_at'])

    @classmethod
    def approved_total(cls, student, academic_year, term):
        """Sum of approved payments for a student in a session/term."""
        total = cls.objects.filter(
            student=student,
            academic_year=academic_year,
            term=term,
            status='APPROVED',
        ).aggregate(total=Sum('amount'))['total']
        return total or Decimal('0.00')
