import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Task',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('project_id', models.UUIDField(blank=True, null=True, verbose_name='project')),
                ('title', models.CharField(max_length=500, verbose_name='title')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='pending', max_length=20, verbose_name='status')),
                ('priority', models.CharField(choices=[('high', 'High'), ('medium', 'Medium'), ('low', 'Low'), ('none', 'None')], default='none', max_length=10, verbose_name='priority')),
                ('due_date', models.DateTimeField(blank=True, null=True, verbose_name='due date')),
                ('estimated_minutes', models.PositiveIntegerField(blank=True, null=True, verbose_name='estimated minutes')),
                ('actual_minutes', models.PositiveIntegerField(blank=True, null=True, verbose_name='actual minutes')),
                ('sort_order', models.IntegerField(default=0, verbose_name='sort order')),
                ('is_recurring', models.BooleanField(default=False, verbose_name='is recurring')),
                ('recurrence_rule', models.JSONField(blank=True, help_text='Serialized RecurrenceRule (see tasks.ai_engine.recurrence).', null=True, verbose_name='recurrence rule')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Free-form bag: source, subtask_type, ai_can_do, category, stall_events.', verbose_name='metadata')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='completed at')),
                ('deleted_at', models.DateTimeField(blank=True, null=True, verbose_name='deleted at')),
                ('parent_task', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='subtasks', to='tasks.task', verbose_name='parent task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tasks', to=settings.AUTH_USER_MODEL, verbose_name='user')),
            ],
            options={
                'verbose_name': 'Task',
                'verbose_name_plural': 'Tasks',
                'ordering': ['sort_order', '-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='tasks_user_status_idx'),
                    models.Index(fields=['user', 'due_date'], name='tasks_user_due_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TaskExecutionHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('original_estimated_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('final_actual_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('estimation_accuracy_ratio', models.FloatField(blank=True, help_text='actual / estimated; null when either side is missing.', null=True)),
                ('original_subtask_count', models.PositiveIntegerField(default=0)),
                ('subtasks_added_mid_execution', models.PositiveIntegerField(default=0)),
                ('added_subtask_titles', models.JSONField(blank=True, default=list)),
                ('stall_events', models.JSONField(blank=True, default=list)),
                ('total_stall_time_minutes', models.PositiveIntegerField(default=0)),
                ('outcome', models.CharField(choices=[('completed', 'Completed'), ('completed_late', 'Completed late'), ('abandoned', 'Abandoned'), ('delegated', 'Delegated'), ('deferred', 'Deferred')], max_length=20)),
                ('task_category', models.CharField(blank=True, default='', max_length=100)),
                ('completion_date', models.DateTimeField(blank=True, null=True)),
                ('days_overdue', models.PositiveIntegerField(default=0)),
                ('keyword_fingerprint', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('task', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='execution_history', to='tasks.task', verbose_name='task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='execution_history', to=settings.AUTH_USER_MODEL, verbose_name='user')),
            ],
            options={
                'verbose_name': 'Task execution history',
                'verbose_name_plural': 'Task execution history',
                'ordering': ['-completion_date'],
            },
        ),
        migrations.CreateModel(
            name='TaskEnrichmentProposal',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('proposed_title', models.CharField(blank=True, default='', max_length=500)),
                ('proposed_description', models.TextField(blank=True, default='')),
                ('proposed_due_date', models.DateTimeField(blank=True, null=True)),
                ('proposed_estimated_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('proposed_priority', models.CharField(choices=[('high', 'High'), ('medium', 'Medium'), ('low', 'Low'), ('none', 'None')], default='none', max_length=10)),
                ('proposed_subtasks', models.JSONField(blank=True, default=list)),
                ('similarity_analysis', models.JSONField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('rejected', 'Rejected')], default='pending', max_length=10)),
                ('accepted_fields', models.JSONField(blank=True, default=list)),
                ('user_modifications', models.JSONField(blank=True, null=True)),
                ('ai_model', models.CharField(blank=True, default='', max_length=100)),
                ('ai_provider', models.CharField(blank=True, default='', max_length=50)),
                ('input_tokens', models.PositiveIntegerField(default=0)),
                ('output_tokens', models.PositiveIntegerField(default=0)),
                ('processing_time_ms', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('responded_at', models.DateTimeField(blank=True, null=True)),
                ('task', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='enrichment_proposals', to='tasks.task', verbose_name='task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrichment_proposals', to=settings.AUTH_USER_MODEL, verbose_name='user')),
            ],
            options={
                'verbose_name': 'Task enrichment proposal',
                'verbose_name_plural': 'Task enrichment proposals',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='AIUsage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('period_start', models.DateField()),
                ('period_end', models.DateField()),
                ('requests', models.PositiveIntegerField(default=0)),
                ('input_tokens', models.PositiveIntegerField(default=0)),
                ('output_tokens', models.PositiveIntegerField(default=0)),
                ('usage_by_feature', models.JSONField(blank=True, default=dict)),
                ('usage_by_provider', models.JSONField(blank=True, default=dict)),
                ('estimated_cost_usd', models.DecimalField(decimal_places=6, default=0, max_digits=12)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ai_usage', to=settings.AUTH_USER_MODEL, verbose_name='user')),
            ],
            options={
                'verbose_name': 'AI usage',
                'verbose_name_plural': 'AI usage',
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'period_start'), name='ai_usage_user_period_uniq'),
                ],
            },
        ),
    ]
