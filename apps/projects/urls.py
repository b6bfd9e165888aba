"""
URL configuration for projects app.
"""
from django.urls import path
from apps.projects.views import (
    ProjectListView, ProjectDetailView,
    TaskListView, TaskDetailView,
)

app_name = 'projects'

urlpatterns = [
    path('projects', ProjectListView.as_view(), name='project-list'),
    path('projects/<uuid:project_id>', ProjectDetailView.as_view(), name='project-detail'),
    path('projects/<uuid:project_id>/tasks', TaskListView.as_view(), name='task-list'),
    path('tasks/<uuid:task_id>', TaskDetailView.as_view(), name='task-detail'),
]
