from django import forms
from django.contrib import admin, messages
from django.core.exceptions import ValidationError

from unfold.admin import ModelAdmin

from .compilation import CompilationScheduler
from .exceptions import AuthorizationError, StateConflictError
from .models import CompilationJob, Result, ResultSettings
from .permissions import Action, can_perform
from .services import approve_results, record_score, reject_results
from .utils import validate_scores


SCORE_FIELDS = ('test1_score', 'test2_score', 'exam_score')
EDITABLE_STATUSES = (Result.Status.DRAFT, Result.Status.REJECTED)


class ResultAdminForm(forms.ModelForm):
    """Checks score caps and the term lock before the admin saves scores."""

    class Meta:
        model = Result
        fields = SCORE_FIELDS

    def clean(self):
        cleaned_data = super().clean()
        if not any(name in self.fields for name in SCORE_FIELDS):
            return cleaned_data

        if self.instance.term.grades_locked:
            raise ValidationError(f"Score entry is locked for {self.instance.term}.")

        try:
            validate_scores(
                cleaned_data.get('test1_score'),
                cleaned_data.get('test2_score'),
                cleaned_data.get('exam_score'),
            )
        except ValidationError as e:
            for name, errors in e.message_dict.items():
                self.add_error(f'{name}_score', errors)
        return cleaned_data


@admin.register(Result)
class ResultAdmin(ModelAdmin):
    """
    Results are created and moved between statuses by the workflow only.

    The change form shows everything read-only except the scores, which an
    assigned supervisor may edit while the result is a draft or was rejected.
    Score edits go through record_score().
    """

    form = ResultAdminForm
    list_display = (
        'student', 'subject', 'class_assigned', 'term', 'total_score',
        'percentage', 'grade', 'position', 'status',
    )
    list_filter = ('status', 'academic_year', 'term', 'class_assigned', 'subject', 'grade')
    search_fields = ('student__first_name', 'student__last_name', 'student__admission_number')
    list_select_related = ('student', 'subject', 'class_assigned', 'term')
    readonly_fields = (
        'student', 'subject', 'class_assigned', 'academic_year', 'term', 'supervisor', 'status',
        'total_score', 'percentage', 'grade', 'grade_remark', 'position',
        'submitted_at', 'approved_at', 'approved_by', 'rejected_at', 'rejected_by',
        'rejection_reason', 'published_at', 'published_by', 'compiled_at',
        'created_at', 'updated_at',
    )
    actions = ['approve_selected', 'reject_selected']

    def has_add_permission(self, request):
        return False

    def can_edit_scores(self, request, obj):
        if obj is None or obj.status not in EDITABLE_STATUSES:
            return False
        # record_score() files scores under the student's current class
        if obj.student.current_class_id != obj.class_assigned_id:
            return False
        return can_perform(request.user, Action.RECORD_SCORE, obj.group_key)[0]

    def get_readonly_fields(self, request, obj=None):
        readonly = list(super().get_readonly_fields(request, obj))
        if not self.can_edit_scores(request, obj):
            readonly.extend(SCORE_FIELDS)
        return readonly

    def save_model(self, request, obj, form, change):
        if not any(name in form.changed_data for name in SCORE_FIELDS):
            return
        try:
            record_score(
                request.user, obj.student, obj.subject, obj.academic_year, obj.term,
                obj.test1_score, obj.test2_score, obj.exam_score,
            )
        except (AuthorizationError, StateConflictError) as e:
            self.message_user(request, e.message, messages.ERROR)

    @admin.action(description='Approve selected submitted results')
    def approve_selected(self, request, queryset):
        try:
            approved = approve_results(request.user, queryset)
        except (AuthorizationError, StateConflictError) as e:
            self.message_user(request, e.message, messages.ERROR)
            return
        self.message_user(request, f"Approved {len(approved)} result(s).", messages.SUCCESS)

    @admin.action(description='Reject selected submitted results')
    def reject_selected(self, request, queryset):
        try:
            rejected = reject_results(request.user, queryset)
        except (AuthorizationError, StateConflictError) as e:
            self.message_user(request, e.message, messages.ERROR)
            return
        self.message_user(request, f"Rejected {len(rejected)} result(s).", messages.WARNING)


@admin.register(CompilationJob)
class CompilationJobAdmin(ModelAdmin):
    """Job monitor: progress and errors of result compilation."""

    list_display = (
        'class_assigned', 'subject', 'term', 'status', 'progress',
        'processed_students', 'total_students', 'error_count', 'scheduled_for', 'completed_at',
    )
    list_filter = ('status', 'academic_year', 'term')
    readonly_fields = (
        'class_assigned', 'subject', 'academic_year', 'term', 'status',
        'total_students', 'processed_students', 'progress', 'errors', 'attempts',
        'scheduled_for', 'started_at', 'completed_at', 'created_at', 'updated_at',
    )
    actions = ['retry_failed_jobs']

    def has_add_permission(self, request):
        return False

    def error_count(self, obj):
        return len(obj.errors)
    error_count.short_description = 'Errors'

    @admin.action(description='Retry failed jobs')
    def retry_failed_jobs(self, request, queryset):
        scheduler = CompilationScheduler()
        retried = 0
        for job in queryset.filter(status=CompilationJob.Status.FAILED):
            try:
                scheduler.retry(request.user, job)
            except (AuthorizationError, StateConflictError) as e:
                self.message_user(request, f"{job}: {e.message}", messages.ERROR)
            else:
                retried += 1
        self.message_user(request, f"Retried {retried} job(s).", messages.SUCCESS)


@admin.register(ResultSettings)
class ResultSettingsAdmin(ModelAdmin):
    list_display = (
        '__str__', 'enabled', 'auto_approve', 'auto_calculate_positions',
        'compilation_delay_minutes', 'access_threshold',
    )
    readonly_fields = ('updated_by', 'updated_at')

    def can_configure(self, request):
        return can_perform(request.user, Action.CONFIGURE)[0]

    def has_module_permission(self, request):
        return self.can_configure(request)

    def has_view_permission(self, request, obj=None):
        return self.can_configure(request)

    def has_change_permission(self, request, obj=None):
        return self.can_configure(request)

    def has_add_permission(self, request):
        return self.can_configure(request) and not ResultSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False

    def save_model(self, request, obj, form, change):
        obj.updated_by = request.user
        super().save_model(request, obj, form, change)
