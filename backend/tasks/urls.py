from django.urls import path
from .views import list_create_view
from .views import retrieve_update_destroy_view
from .views import complete_view
from .views import enrich_view, apply_enrichment_view, similar_tasks_view
from .views import execution_insights_view, usage_view

urlpatterns=[
    # GET and POST (List active tasks and Create new task)
    path('',list_create_view,name="create-list-view"),

    # GET, PUT, PATCH, DELETE (Detail and Manipulation)
    path('<uuid:pk>/',retrieve_update_destroy_view,name="task-detail"),

    path('<uuid:pk>/complete/',complete_view,name="task-complete"),

    # AI enrichment
    path('ai/enrich/',enrich_view,name="ai-enrich"),
    path('ai/enrich/apply/',apply_enrichment_view,name="ai-enrich-apply"),
    path('ai/similar-tasks/',similar_tasks_view,name="ai-similar-tasks"),
    path('ai/execution-insights/<uuid:task_id>/',execution_insights_view,name="ai-execution-insights"),
    path('ai/usage/',usage_view,name="ai-usage"),

]
