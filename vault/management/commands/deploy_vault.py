from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from facilitator.services import X402FacilitatorError, chain_config
from vault.errors import VaultError
from vault.services import deploy_ledger


class Command(BaseCommand):
    help = 'Deploy the in-process vault ledger configured by VAULT_* settings.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fund', nargs=2, action='append', default=[], metavar=('ADDRESS', 'AMOUNT'),
            help='Mint AMOUNT base units of the settlement token to ADDRESS (demo only).')

    def handle(self, *args, **options):
        if not settings.VAULT_TREASURY_ADDRESS:
            raise CommandError('VAULT_TREASURY_ADDRESS is not set')
        try:
            ledger = deploy_ledger(chain_config())
            for address, amount in options['fund']:
                ledger.token.mint(address, int(amount))
                self.stdout.write(f'Funded {address} with {amount}')
        except (VaultError, X402FacilitatorError, ValueError) as exc:
            raise CommandError(str(exc)) from exc

        state = ledger.describe()
        self.stdout.write(self.style.SUCCESS(f"Vault deployed to {state['address']}"))
        self.stdout.write(f"Treasury: {state['treasury']}")
        self.stdout.write(f"Asset: {state['asset']}")
