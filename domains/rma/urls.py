from django.urls import path

from .views import (
    RMACaseDetailAPI,
    RMACaseHistoryAPI,
    RMACaseListCreateAPI,
    SLABreachListAPI,
    SLAOverdueAPI,
    WorkflowAssignAPI,
    WorkflowEscalateAPI,
    WorkflowProcessAPI,
    WorkflowRulesAPI,
)

app_name = "rma"

urlpatterns = [
    # --- 케이스 ---
    path("rma/", RMACaseListCreateAPI.as_view(), name="case-list"),
    path("rma/<uuid:case_id>/", RMACaseDetailAPI.as_view(), name="case-detail"),
    path("rma/<uuid:case_id>/history/", RMACaseHistoryAPI.as_view(), name="case-history"),
    # --- 워크플로 ---
    path("workflow/assign/<uuid:case_id>/", WorkflowAssignAPI.as_view(), name="workflow-assign"),
    path("workflow/process/<uuid:case_id>/", WorkflowProcessAPI.as_view(), name="workflow-process"),
    path("workflow/escalate/", WorkflowEscalateAPI.as_view(), name="workflow-escalate"),
    path("workflow/sla-breaches/", SLABreachListAPI.as_view(), name="sla-breaches"),
    path("workflow/sla-overdue/", SLAOverdueAPI.as_view(), name="sla-overdue"),
    path("workflow/rules/", WorkflowRulesAPI.as_view(), name="workflow-rules"),
]
