from rest_framework_simplejwt import views as jwt_views
from drf_yasg.utils import swagger_auto_schema

from . import serializers as my_serializers


class CustomTokenObtainPairView(jwt_views.TokenObtainPairView):
    serializer_class = my_serializers.CustomTokenObtainPairSerializer

    @swagger_auto_schema(operation_summary="Obtain a JWT access/refresh pair")
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)
