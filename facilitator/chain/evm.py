"""
EVM chain client backed by a JSON-RPC node.
"""
from typing import Any, Dict, Optional, Tuple

from hexbytes import HexBytes
from loguru import logger
from web3 import HTTPProvider, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from facilitator.types import Authorization

from .base import ChainClient, ChainError, TransactionReceipt
from .networks import EXPLORER_URLS, get_chain_id


USDC_ABI = [
    {
        'inputs': [{'internalType': 'address', 'name': 'account', 'type': 'address'}],
        'name': 'balanceOf',
        'outputs': [{'internalType': 'uint256', 'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'address', 'name': 'owner', 'type': 'address'},
            {'internalType': 'address', 'name': 'spender', 'type': 'address'},
        ],
        'name': 'allowance',
        'outputs': [{'internalType': 'uint256', 'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'address', 'name': 'spender', 'type': 'address'},
            {'internalType': 'uint256', 'name': 'value', 'type': 'uint256'},
        ],
        'name': 'approve',
        'outputs': [{'internalType': 'bool', 'name': '', 'type': 'bool'}],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'address', 'name': 'authorizer', 'type': 'address'},
            {'internalType': 'bytes32', 'name': 'nonce', 'type': 'bytes32'},
        ],
        'name': 'authorizationState',
        'outputs': [{'internalType': 'bool', 'name': '', 'type': 'bool'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'address', 'name': 'from', 'type': 'address'},
            {'internalType': 'address', 'name': 'to', 'type': 'address'},
            {'internalType': 'uint256', 'name': 'value', 'type': 'uint256'},
            {'internalType': 'uint256', 'name': 'validAfter', 'type': 'uint256'},
            {'internalType': 'uint256', 'name': 'validBefore', 'type': 'uint256'},
            {'internalType': 'bytes32', 'name': 'nonce', 'type': 'bytes32'},
            {'internalType': 'uint8', 'name': 'v', 'type': 'uint8'},
            {'internalType': 'bytes32', 'name': 'r', 'type': 'bytes32'},
            {'internalType': 'bytes32', 'name': 's', 'type': 'bytes32'},
        ],
        'name': 'transferWithAuthorization',
        'outputs': [],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
]

VAULT_ABI = [
    {
        'inputs': [
            {'internalType': 'address', 'name': 'author', 'type': 'address'},
            {'internalType': 'uint256', 'name': 'amount', 'type': 'uint256'},
        ],
        'name': 'settlePayment',
        'outputs': [],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
]


def signature_to_components(signature: str) -> Tuple[int, bytes, bytes]:
    """Split a 65-byte signature into v, r, s."""
    try:
        signature_bytes = HexBytes(signature)
    except (ValueError, TypeError) as exc:
        raise ChainError('Invalid authorization signature.') from exc
    if len(signature_bytes) != 65:
        raise ChainError('Authorization signature must be 65 bytes.')

    r = signature_bytes[:32]
    s = signature_bytes[32:64]
    v = signature_bytes[64]
    if v < 27:
        v += 27
    return int(v), bytes(r), bytes(s)


class EvmChainClient(ChainClient):
    """Chain client for EVM networks (Avalanche, Base) over JSON-RPC."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.network = config.get('network', 'avalanche-fuji')
        self.rpc_url = config.get('rpc_url', '')
        self.signer_private_key = config.get('signer_private_key', '')
        self.signer_address = config.get('signer_address', '')
        self.gas_limit = config.get('gas_limit', 250000)
        self.tx_timeout_seconds = config.get('tx_timeout_seconds', 120)
        self.max_fee_per_gas_wei = config.get('max_fee_per_gas_wei', 0)
        self.max_priority_fee_per_gas_wei = config.get(
            'max_priority_fee_per_gas_wei', 0)
        self._chain_id = config.get('chain_id') or get_chain_id(self.network)
        self._asset_address = Web3.to_checksum_address(config['asset_address'])
        self._web3: Optional[Web3] = None

    @property
    def chain_name(self) -> str:
        return self.network

    @property
    def chain_id(self) -> int:
        return int(self._chain_id)

    @property
    def asset_address(self) -> str:
        return self._asset_address

    @property
    def operator_address(self) -> str:
        if self.signer_address:
            return Web3.to_checksum_address(self.signer_address)
        if not self.signer_private_key:
            raise ChainError('X402_SIGNER_PRIVATE_KEY is not configured.')
        return self.web3.eth.account.from_key(self.signer_private_key).address

    @property
    def web3(self) -> Web3:
        if self._web3 is None:
            if not self.rpc_url:
                raise ChainError('X402_RPC_URL is not configured.')
            self._web3 = Web3(HTTPProvider(self.rpc_url))
        return self._web3

    def _token(self):
        return self.web3.eth.contract(address=self.asset_address, abi=USDC_ABI)

    def balance_of(self, address: str) -> int:
        return int(self._token().functions.balanceOf(
            Web3.to_checksum_address(address)).call())

    def authorization_state(self, authorizer: str, nonce: str) -> bool:
        return bool(self._token().functions.authorizationState(
            Web3.to_checksum_address(authorizer), HexBytes(nonce)).call())

    def allowance(self, owner: str, spender: str) -> int:
        return int(self._token().functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call())

    def transfer_with_authorization(self, authorization: Authorization, signature: str) -> str:
        v, r, s = signature_to_components(signature)
        transfer_fn = self._token().functions.transferWithAuthorization(
            Web3.to_checksum_address(authorization.from_),
            Web3.to_checksum_address(authorization.to),
            authorization.value_int,
            authorization.valid_after_int,
            authorization.valid_before_int,
            HexBytes(authorization.nonce),
            v,
            r,
            s,
        )
        return self._send(transfer_fn, 'transferWithAuthorization')

    def approve(self, spender: str, amount: int) -> str:
        approve_fn = self._token().functions.approve(
            Web3.to_checksum_address(spender), int(amount))
        return self._send(approve_fn, 'approve')

    def settle_payment(self, vault: str, recipient: str, amount: int) -> str:
        contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(vault), abi=VAULT_ABI)
        settle_fn = contract.functions.settlePayment(
            Web3.to_checksum_address(recipient), int(amount))
        return self._send(settle_fn, 'settlePayment')

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                HexBytes(tx_hash), timeout=self.tx_timeout_seconds)
        except TimeExhausted as exc:
            raise ChainError(
                f'Timed out waiting for transaction {tx_hash}.') from exc
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=int(receipt.status),
            block_number=receipt.blockNumber,
            gas_used=receipt.gasUsed,
        )

    def _send(self, contract_fn, label: str) -> str:
        if not self.signer_private_key:
            raise ChainError('X402_SIGNER_PRIVATE_KEY is not configured.')

        web3 = self.web3
        signer_address = self.operator_address

        try:
            estimated_gas = contract_fn.estimate_gas({'from': signer_address})
        except ContractLogicError:
            raise
        except Exception as exc:  # pragma: no cover - estimation often fails against test nodes
            logger.debug(
                'Gas estimation for {} failed, falling back to configured gas limit: {}',
                label, exc)
            estimated_gas = self.gas_limit

        tx_params = {
            'chainId': self.chain_id,
            'from': signer_address,
            'nonce': web3.eth.get_transaction_count(signer_address),
            'gas': max(estimated_gas, self.gas_limit),
        }

        if self.max_fee_per_gas_wei and self.max_priority_fee_per_gas_wei:
            tx_params['maxFeePerGas'] = int(self.max_fee_per_gas_wei)
            tx_params['maxPriorityFeePerGas'] = int(
                self.max_priority_fee_per_gas_wei)
        else:
            tx_params['gasPrice'] = web3.eth.gas_price

        transaction = contract_fn.build_transaction(tx_params)
        signed = web3.eth.account.sign_transaction(
            transaction, private_key=self.signer_private_key)

        raw_tx = getattr(signed, 'raw_transaction', None)
        if raw_tx is None:
            raw_tx = getattr(signed, 'rawTransaction', None)
        if raw_tx is None:
            raise ChainError('Signer returned unexpected transaction encoding.')

        tx_hash = web3.eth.send_raw_transaction(raw_tx)
        tx_hex = Web3.to_hex(tx_hash)
        logger.debug('Submitted {} transaction: {}', label, tx_hex)
        return tx_hex

    def get_explorer_url(self, tx_hash: str) -> str:
        base = self.config.get('explorer_url') or EXPLORER_URLS.get(self.network, '')
        return f'{base}/tx/{tx_hash}'
