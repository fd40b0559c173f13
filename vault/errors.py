"""
Ledger reverts. Every error aborts the surrounding atomic block, so a call
that raises leaves no state behind.
"""


class VaultError(Exception):
    """Base class for ledger and settlement-token reverts."""


class AccessControlError(VaultError):
    def __init__(self, account: str, role: str):
        super().__init__(f'AccessControl: account {account.lower()} is missing role {role}')
        self.account = account
        self.role = role


class ReentrancyError(VaultError):
    def __init__(self):
        super().__init__('ReentrancyGuard: reentrant call')


class InvalidSettlement(VaultError):
    pass


class NothingToClaim(VaultError):
    def __init__(self):
        super().__init__('Nothing to claim')


class InvalidConfiguration(VaultError):
    pass


class InsufficientFunds(VaultError):
    pass


class AuthorizationError(VaultError):
    """An EIP-3009 authorization was rejected by the token."""
