from django.contrib import admin, messages

from unfold.admin import ModelAdmin

from .models import FeeStructure, Payment


@admin.register(FeeStructure)
class FeeStructureAdmin(ModelAdmin):
    list_display = ('category', 'applies_to', 'academic_year', 'term', 'amount', 'is_active')
    list_filter = ('academic_year', 'term', 'category', 'level_type', 'is_active')

    def applies_to(self, obj):
        return obj.get_applies_to_display()
    applies_to.short_description = 'Applies To'


@admin.register(Payment)
class PaymentAdmin(ModelAdmin):
    list_display = ('receipt_number', 'student', 'academic_year', 'term', 'amount', 'method', 'status', 'transaction_date')
    list_filter = ('status', 'method', 'academic_year', 'term')
    search_fields = ('receipt_number', 'reference', 'student__admission_number', 'student__last_name')
    readonly_fields = ('receipt_number', 'confirmed_by', 'confirmed_at', 'created_at', 'updated_at')
    actions = ['approve_payments', 'reject_payments']

    @admin.action(description='Approve selected payments')
    def approve_payments(self, request, queryset):
        pending = queryset.filter(status='PENDING')
        for payment in pending:
            payment.approve(request.user)
        self.message_user(request, f"Approved {len(pending)} payment(s).", messages.SUCCESS)

    @admin.action(description='Reject selected payments')
    def reject_payments(self, request, queryset):
        pending = queryset.filter(status='PENDING')
        for payment in pending:
            payment.reject(request.user)
        self.message_user(request, f"Rejected {len(pending)} payment(s).", messages.WARNING)
