from rest_framework import generics, permissions, status, views
from rest_framework.filters import OrderingFilter
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import no_body, swagger_auto_schema
from drf_yasg import openapi

from projects.serializers import MilestoneSerializer
from .models import LedgerEntry, ReleaseRequest
from .serializers import (
	EscrowAccountSerializer,
	EscrowSnapshotSerializer,
	FundEscrowSerializer,
	LedgerEntrySerializer,
	RejectReleaseSerializer,
	ReleaseRequestSerializer,
	RequestReleaseSerializer,
)
from .services import EscrowService


project_param = openapi.Parameter(
	'project_id',
	openapi.IN_PATH,
	description="Project ID",
	type=openapi.TYPE_INTEGER,
)
milestone_param = openapi.Parameter(
	'milestone_id',
	openapi.IN_PATH,
	description="Milestone ID",
	type=openapi.TYPE_INTEGER,
)
release_param = openapi.Parameter(
	'release_id',
	openapi.IN_PATH,
	description="Release request ID",
	type=openapi.TYPE_INTEGER,
)


class EscrowMutationView(views.APIView):
	"""Base for the views that change escrow state; they share one throttle scope."""

	permission_classes = [permissions.IsAuthenticated]
	throttle_classes = [ScopedRateThrottle]
	throttle_scope = "escrow"
	service_class = EscrowService

	def get_service(self):
		return self.service_class()


class ProjectEscrowView(EscrowMutationView):

	def get_throttles(self):
		if self.request.method == "GET":
			return []
		return super().get_throttles()

	@swagger_auto_schema(
		operation_summary="Get the escrow ledger and milestones of a project",
		manual_parameters=[project_param],
		responses={200: openapi.Response(description="Escrow snapshot"), 403: "Forbidden", 404: "Not funded / not found"},
	)
	def get(self, request, project_id):
		snapshot = self.get_service().get_escrow_snapshot(user=request.user, project_id=project_id)
		return Response(EscrowSnapshotSerializer(snapshot).data, status=status.HTTP_200_OK)

	@swagger_auto_schema(
		operation_summary="Fund (top up) a project's escrow",
		manual_parameters=[project_param],
		request_body=FundEscrowSerializer,
		responses={201: EscrowAccountSerializer(), 400: "Invalid amount", 403: "Forbidden", 404: "Not found"},
	)
	def post(self, request, project_id):
		serializer = FundEscrowSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		account = self.get_service().fund(
			user=request.user,
			project_id=project_id,
			amount=serializer.validated_data["amount"],
		)
		return Response(EscrowAccountSerializer(account).data, status=status.HTTP_201_CREATED)


class EscrowHistoryView(generics.ListAPIView):
	serializer_class = LedgerEntrySerializer
	permission_classes = [permissions.IsAuthenticated]
	filter_backends = [DjangoFilterBackend]
	filterset_fields = ["entry_type"]

	@swagger_auto_schema(
		operation_summary="List the ledger entries (fundings and releases) of a project",
		manual_parameters=[project_param],
		responses={200: LedgerEntrySerializer(many=True)},
	)
	def get(self, request, *args, **kwargs):
		return super().get(request, *args, **kwargs)

	def get_queryset(self):
		if getattr(self, "swagger_fake_view", False):
			return LedgerEntry.objects.none()
		return EscrowService().get_history(user=self.request.user, project_id=self.kwargs["project_id"])


class StartMilestoneView(EscrowMutationView):

	@swagger_auto_schema(
		operation_summary="Start work on a pending milestone",
		manual_parameters=[project_param, milestone_param],
		request_body=no_body,
		responses={200: MilestoneSerializer(), 403: "Forbidden", 409: "Invalid state"},
	)
	def post(self, request, project_id, milestone_id):
		milestone = self.get_service().start_milestone(
			user=request.user,
			project_id=project_id,
			milestone_id=milestone_id,
		)
		return Response(MilestoneSerializer(milestone).data, status=status.HTTP_200_OK)


class RequestReleaseView(EscrowMutationView):

	@swagger_auto_schema(
		operation_summary="Request release of a milestone payment",
		manual_parameters=[project_param, milestone_param],
		request_body=RequestReleaseSerializer,
		responses={
			201: ReleaseRequestSerializer(),
			400: "Invalid amount",
			403: "Forbidden",
			404: "Not found",
			409: "Duplicate request or invalid state",
		},
	)
	def post(self, request, project_id, milestone_id):
		serializer = RequestReleaseSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		release = self.get_service().request_release(
			user=request.user,
			project_id=project_id,
			milestone_id=milestone_id,
			amount=serializer.validated_data["amount"],
		)
		return Response(ReleaseRequestSerializer(release).data, status=status.HTTP_201_CREATED)


class ReleaseListView(generics.ListAPIView):
	serializer_class = ReleaseRequestSerializer
	permission_classes = [permissions.IsAuthenticated]
	filter_backends = [DjangoFilterBackend, OrderingFilter]
	filterset_fields = ["status", "milestone"]
	ordering_fields = ["created_at", "resolved_at", "amount"]
	ordering = ["-created_at"]

	@swagger_auto_schema(
		operation_summary="List release requests of a project",
		manual_parameters=[
			project_param,
			openapi.Parameter(
				'status',
				openapi.IN_QUERY,
				description="Filter by status (open, approved, rejected, withdrawn)",
				type=openapi.TYPE_STRING,
			),
		],
		responses={200: ReleaseRequestSerializer(many=True)},
	)
	def get(self, request, *args, **kwargs):
		return super().get(request, *args, **kwargs)

	def get_queryset(self):
		if getattr(self, "swagger_fake_view", False):
			return ReleaseRequest.objects.none()
		return EscrowService().list_releases(user=self.request.user, project_id=self.kwargs["project_id"])


class ApproveReleaseView(EscrowMutationView):

	@swagger_auto_schema(
		operation_summary="Approve a release request and pay out the milestone",
		manual_parameters=[project_param, release_param],
		request_body=no_body,
		responses={
			200: openapi.Response(description="Release, milestone and ledger after approval"),
			403: "Forbidden",
			404: "Not found",
			409: "Insufficient funds or invalid state",
		},
	)
	def put(self, request, project_id, release_id):
		release, milestone, account = self.get_service().approve_release(
			user=request.user,
			project_id=project_id,
			release_id=release_id,
		)
		return Response({
			"release": ReleaseRequestSerializer(release).data,
			"milestone": MilestoneSerializer(milestone).data,
			"escrow": EscrowAccountSerializer(account).data,
		}, status=status.HTTP_200_OK)


class RejectReleaseView(EscrowMutationView):

	@swagger_auto_schema(
		operation_summary="Reject a release request",
		manual_parameters=[project_param, release_param],
		request_body=RejectReleaseSerializer,
		responses={200: openapi.Response(description="Release and milestone after rejection"), 403: "Forbidden", 409: "Invalid state"},
	)
	def put(self, request, project_id, release_id):
		serializer = RejectReleaseSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		release, milestone = self.get_service().reject_release(
			user=request.user,
			project_id=project_id,
			release_id=release_id,
			reason=serializer.validated_data["reason"],
		)
		return Response({
			"release": ReleaseRequestSerializer(release).data,
			"milestone": MilestoneSerializer(milestone).data,
		}, status=status.HTTP_200_OK)


class WithdrawReleaseView(EscrowMutationView):

	@swagger_auto_schema(
		operation_summary="Withdraw your own open release request",
		manual_parameters=[project_param, release_param],
		responses={200: openapi.Response(description="Release and milestone after withdrawal"), 403: "Forbidden", 409: "Invalid state"},
	)
	def delete(self, request, project_id, release_id):
		release, milestone = self.get_service().withdraw_release(
			user=request.user,
			project_id=project_id,
			release_id=release_id,
		)
		return Response({
			"release": ReleaseRequestSerializer(release).data,
			"milestone": MilestoneSerializer(milestone).data,
		}, status=status.HTTP_200_OK)
