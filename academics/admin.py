from django.contrib import admin

from unfold.admin import ModelAdmin

from .models import Class, ClassSubject, Subject


@admin.register(Class)
class ClassAdmin(ModelAdmin):
    list_display = ('name', 'level_type', 'level_number', 'section', 'is_active')
    list_filter = ('level_type', 'is_active')


@admin.register(Subject)
class SubjectAdmin(ModelAdmin):
    list_display = ('name', 'short_name', 'is_core', 'is_active')
    search_fields = ('name', 'short_name')


@admin.register(ClassSubject)
class ClassSubjectAdmin(ModelAdmin):
    list_display = ('subject', 'class_assigned', 'supervisor')
    list_filter = ('class_assigned', 'subject')
