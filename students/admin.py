from django.contrib import admin

from unfold.admin import ModelAdmin

from .models import Student


@admin.register(Student)
class StudentAdmin(ModelAdmin):
    list_display = ('admission_number', 'full_name', 'current_class', 'guardian', 'status', 'is_active')
    list_filter = ('status', 'current_class', 'is_active')
    search_fields = ('admission_number', 'first_name', 'last_name')
