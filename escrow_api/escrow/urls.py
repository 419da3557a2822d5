from django.urls import path

from . import views

urlpatterns = [
    path("projects/<int:project_id>/escrow/", views.ProjectEscrowView.as_view(), name="project-escrow"),
    path("projects/<int:project_id>/escrow/history/", views.EscrowHistoryView.as_view(), name="escrow-history"),
    path(
        "projects/<int:project_id>/milestones/<int:milestone_id>/start/",
        views.StartMilestoneView.as_view(),
        name="milestone-start",
    ),
    path(
        "projects/<int:project_id>/milestones/<int:milestone_id>/release/",
        views.RequestReleaseView.as_view(),
        name="milestone-release-request",
    ),
    path("projects/<int:project_id>/releases/", views.ReleaseListView.as_view(), name="release-list"),
    path(
        "projects/<int:project_id>/releases/<int:release_id>/",
        views.WithdrawReleaseView.as_view(),
        name="release-withdraw",
    ),
    path(
        "projects/<int:project_id>/releases/<int:release_id>/approve/",
        views.ApproveReleaseView.as_view(),
        name="release-approve",
    ),
    path(
        "projects/<int:project_id>/releases/<int:release_id>/reject/",
        views.RejectReleaseView.as_view(),
        name="release-reject",
    ),
]
