from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from facilitator.services import chain_config
from facilitator.views import ADDRESS_PATTERN
from vault.errors import InvalidConfiguration
from vault.services import build_ledger


class VaultAPIView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    ledger = None

    def get_ledger(self):
        return self.ledger or build_ledger(chain_config())


class VaultStateView(VaultAPIView):
    def get(self, request, *args, **kwargs) -> Response:
        try:
            state = self.get_ledger().describe()
        except InvalidConfiguration:
            return Response(
                {'error': f'No vault deployed at {settings.VAULT_ADDRESS}'},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(state, status=status.HTTP_200_OK)


class AuthorProfileView(VaultAPIView):
    def get(self, request, address: str, *args, **kwargs) -> Response:
        if not ADDRESS_PATTERN.match(address):
            return Response(
                {'error': 'Invalid author address'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        profile = self.get_ledger().get_profile(address)
        return Response(profile.to_dict(), status=status.HTTP_200_OK)
