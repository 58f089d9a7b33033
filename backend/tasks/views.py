from rest_framework import generics, permissions, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from .ai_engine.applier import EnrichmentApplier
from .ai_engine.exceptions import NotFoundError
from .ai_engine.history import ExecutionHistoryRecorder
from .ai_engine.orchestrator import EnrichmentOrchestrator
from .ai_engine.similarity import SimilarTaskMatcher
from .ai_engine.usage import UsageTracker
from .models import Task
from .serializers import (
    ApplyEnrichmentSerializer,
    CompleteTaskSerializer,
    EnrichRequestSerializer,
    SimilarTasksRequestSerializer,
    TaskSerializer,
)
from .services import complete_task, soft_delete_task, uncomplete_task


class TaskOwnerPermission(permissions.BasePermission):
    """
    Custom permission to only allow owners of a Task to view, edit, or delete it.
    """
    def has_object_permission(self, request, view, obj):
        return obj.user == request.user


def _active_tasks(user):
    return Task.objects.filter(user=user, deleted_at__isnull=True)


class TaskListCreateView(generics.ListCreateAPIView):
    """
    GET: List the authenticated user's non-deleted tasks.
    POST: Create a new task.
    """
    serializer_class = TaskSerializer
    permission_classes = [permissions.IsAuthenticated]
    queryset = Task.objects.all()

    def get_queryset(self):
        # ensure user only sees own tasks
        return _active_tasks(self.request.user)

list_create_view = TaskListCreateView.as_view()


class TaskRetrieveUpdateDestroyView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET, PUT, PATCH, DELETE for a specific task instance.
    DELETE is a soft delete (sets deleted_at).
    """
    serializer_class = TaskSerializer
    permission_classes = [permissions.IsAuthenticated, TaskOwnerPermission]

    # Ensures the user can only access tasks they own.
    def get_queryset(self):
        return _active_tasks(self.request.user)

    def perform_destroy(self, instance):
        soft_delete_task(instance)

retrieve_update_destroy_view = TaskRetrieveUpdateDestroyView.as_view()


class TaskCompleteView(generics.GenericAPIView):
    """
    POST {"completed": true|false, "actual_minutes": int?}
    Completing a task with an accepted enrichment proposal enqueues
    execution history recording.
    """
    serializer_class = CompleteTaskSerializer
    permission_classes = [permissions.IsAuthenticated, TaskOwnerPermission]

    def get_queryset(self):
        return _active_tasks(self.request.user)

    def post(self, request, *args, **kwargs):
        task = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        if serializer.validated_data['completed']:
            task = complete_task(task, actual_minutes=serializer.validated_data.get('actual_minutes'))
        else:
            task = uncomplete_task(task)
        return Response(TaskSerializer(task, context={'request': request}).data)

complete_view = TaskCompleteView.as_view()


class EnrichTaskView(APIView):
    """POST: enrich a task description into a cached proposal."""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = EnrichRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EnrichmentOrchestrator().enrich(request.user.id, serializer.to_descriptor())
        return Response(result.to_dict(), status=status.HTTP_200_OK)

enrich_view = EnrichTaskView.as_view()


class ApplyEnrichmentView(APIView):
    """POST: apply accepted proposal fields to a task."""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ApplyEnrichmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            task = EnrichmentApplier().apply(
                request.user.id,
                data['task_id'],
                data['proposal_id'],
                data['accepted_fields'],
                modifications=dict(data.get('modifications') or {}),
            )
        except NotFoundError as e:
            raise NotFound(str(e))

        return Response(TaskSerializer(task, context={'request': request}).data)

apply_enrichment_view = ApplyEnrichmentView.as_view()


class SimilarTasksView(APIView):
    """POST: completed tasks similar to the given title/description."""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = SimilarTasksRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        analysis = SimilarTaskMatcher().find_similar_tasks(
            request.user.id,
            serializer.to_descriptor(),
            limit=serializer.validated_data['limit'],
        )
        return Response(analysis.to_dict())

similar_tasks_view = SimilarTasksView.as_view()


class ExecutionInsightsView(APIView):
    """GET: execution history and derived advice for one task."""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, task_id):
        try:
            summary = ExecutionHistoryRecorder().summarize(request.user.id, task_id)
        except NotFoundError as e:
            raise NotFound(str(e))
        return Response(summary)

execution_insights_view = ExecutionInsightsView.as_view()


class AIUsageView(APIView):
    """GET: the current month's AI usage for the authenticated user."""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(UsageTracker().current_usage(request.user.id))

usage_view = AIUsageView.as_view()
