from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

from orders.models import Staff


class StaffTokenAuthentication(BaseAuthentication):
    """
    Staff key authentication using X-API-Key header
    """

    def authenticate(self, request):
        api_key = request.META.get('HTTP_X_API_KEY')

        if not api_key:
            return None

        try:
            staff = Staff.objects.select_related('branch').get(api_key=api_key)
        except Staff.DoesNotExist:
            raise AuthenticationFailed('Invalid API key')

        if not staff.is_active:
            raise AuthenticationFailed('Account inactive. Contact manager.')

        # request.user is the Staff row; request.auth is the raw key
        return (staff, api_key)

    def authenticate_header(self, request):
        return 'X-API-Key'
