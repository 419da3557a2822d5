from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Serializer for login and token generation.

    Fields:
        - email (required)
        - password (required)
    Adds the caller's email and role to the token claims so clients can
    render the right workflow; the server still re-reads the role from the
    user record on every request.
    """
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['email'] = user.email
        token['user_type'] = user.user_type
        return token

    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.user_type:
            raise AuthenticationFailed("Account has no role assigned.")
        data['user_type'] = self.user.user_type
        return data
