import os
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional, Sequence

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.rpc.errors import NodeUnhealthyMessage, SendTransactionPreflightFailureMessage
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import (
    InstructionErrorCustom,
    TransactionConfirmationStatus,
    TransactionErrorInstructionError,
)

from shared.addressing import AddressDeriver, to_pubkey
from .ledger_client import (
    LedgerClient,
    LedgerError,
    AccountState,
    TransitionRequest,
    TransitionRejected,
    Unconfirmed,
    Throttled,
    TxStatus,
)
from .program_layout import build_instruction, decode_account, rejection_code

logger = logging.getLogger(__name__)

COMMITMENT_LEVELS = ["processed", "confirmed", "finalized"]

CONFIRMATION_STATUSES = [
    ("processed", TransactionConfirmationStatus.Processed),
    ("confirmed", TransactionConfirmationStatus.Confirmed),
    ("finalized", TransactionConfirmationStatus.Finalized),
]


def load_keypair(value: Optional[str]) -> Keypair:
    """Keypair from a JSON byte-array file or a base58 secret; a fresh one when unset."""
    if not value:
        return Keypair()
    if os.path.isfile(value):
        with open(value) as f:
            return Keypair.from_json(f.read())
    return Keypair.from_base58_string(value)


def parse_retry_after(value: Optional[str], now: datetime = None) -> Optional[float]:
    """Seconds to wait from a Retry-After header given as delay-seconds or an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def custom_error_code(err) -> Optional[int]:
    if isinstance(err, TransactionErrorInstructionError) and isinstance(err.err, InstructionErrorCustom):
        return err.err.code
    return None


def confirmation_level(status) -> Optional[str]:
    for level, value in CONFIRMATION_STATUSES:
        if status == value:
            return level
    return None


class RpcLedgerClient(LedgerClient):
    """
    LedgerClient for a Solana-compatible node.

    Reads fetch and decode program accounts, transitions are encoded as
    program instructions, signed by the fee payer and sent raw, and finality
    is polled with ``getSignatureStatuses``.
    """

    def __init__(
        self,
        rpc_url: str,
        program_id: str,
        payer: Keypair,
        commitment: str = "finalized",
        request_timeout: float = 10.0,
        client: Client = None,
        **kwargs
    ):
        super().__init__(**kwargs)
        if commitment not in COMMITMENT_LEVELS:
            raise ValueError(f"Unknown commitment level: {commitment}")
        self.rpc_url = rpc_url
        self.deriver = AddressDeriver(program_id)
        self.payer = payer
        self.commitment = commitment
        self.client = client or Client(rpc_url, commitment=commitment, timeout=request_timeout)
        self._instructions: Dict[str, str] = {}

    @property
    def authority(self) -> str:
        return str(self.payer.pubkey())

    # ==================== Transport ====================

    def _call(self, method: str, func, *args, submitting: bool = False, instruction: str = None, **kwargs):
        try:
            resp = func(*args, **kwargs)
        except RPCException as e:
            self._raise_rpc_error(method, e.args[0] if e.args else None, instruction)
        except SolanaRpcException as e:
            raise self._transport_error(method, e.__cause__ or e.__context__, submitting) from e
        except httpx.HTTPError as e:
            raise self._transport_error(method, e, submitting) from e

        # Non-send methods hand back the RPC error object instead of raising
        if not hasattr(resp, "value"):
            self._raise_rpc_error(method, resp, instruction)
        return resp

    def _transport_error(self, method: str, cause, submitting: bool) -> LedgerError:
        if isinstance(cause, (httpx.ConnectError, httpx.ConnectTimeout)):
            # Nothing left this process
            return Unconfirmed(f"Ledger RPC unreachable: {cause}", submitted=False)
        if isinstance(cause, httpx.HTTPStatusError):
            status = cause.response.status_code
            if status == 429:
                return Throttled(
                    f"Ledger RPC throttled {method}",
                    retry_after=parse_retry_after(cause.response.headers.get("Retry-After"))
                )
            if status >= 500:
                return Unconfirmed(f"Ledger RPC {method} returned HTTP {status}", submitted=submitting)
            return LedgerError(f"Ledger RPC {method} returned HTTP {status}")
        return Unconfirmed(f"Ledger RPC {method} failed: {cause}", submitted=submitting)

    def _raise_rpc_error(self, method: str, error, instruction: Optional[str]):
        message = getattr(error, "message", None) or str(error)

        if isinstance(error, NodeUnhealthyMessage):
            raise Throttled(f"Ledger RPC {method}: {message}")
        if isinstance(error, SendTransactionPreflightFailureMessage):
            err = error.data.err
            code = custom_error_code(err)
            if code is not None:
                raise TransitionRejected(rejection_code(instruction, code), message)
            raise TransitionRejected("preflight_failed", f"{message}: {err}")
        raise LedgerError(f"Ledger RPC {method} error: {message}")

    # ==================== LedgerClient ====================

    def read(self, address: str) -> Optional[AccountState]:
        resp = self._call(
            "getAccountInfo",
            self.client.get_account_info,
            to_pubkey(address),
            commitment=self.commitment,
        )
        account = resp.value
        if account is None:
            return None
        if account.owner != self.deriver.program:
            raise LedgerError(f"Account {address} is owned by {account.owner}, not the room program")
        return AccountState(address=address, data=decode_account(account.data), slot=resp.context.slot)

    def _send(self, request: TransitionRequest, signers: Sequence[str]) -> str:
        payer = self.payer.pubkey()
        instruction = build_instruction(request, self.deriver, payer)

        passed_as_accounts = [s for s in signers if s != self.authority]
        if passed_as_accounts:
            logger.debug(f"{request.instruction}: {passed_as_accounts} passed as accounts, fee payer signs")

        blockhash = self._call(
            "getLatestBlockhash",
            self.client.get_latest_blockhash,
            commitment=self.commitment,
        ).value.blockhash
        transaction = Transaction.new_signed_with_payer([instruction], payer, [self.payer], blockhash)

        resp = self._call(
            "sendTransaction",
            self.client.send_raw_transaction,
            bytes(transaction),
            opts=TxOpts(skip_confirmation=True, preflight_commitment=self.commitment),
            submitting=True,
            instruction=request.instruction,
        )
        tx_id = str(resp.value)
        self._instructions[tx_id] = request.instruction
        logger.debug(f"Sent {request.instruction} as {tx_id}")
        return tx_id

    def _status(self, tx_id: str) -> TxStatus:
        resp = self._call(
            "getSignatureStatuses",
            self.client.get_signature_statuses,
            [Signature.from_string(tx_id)],
            search_transaction_history=True,
        )
        status = resp.value[0] if resp.value else None
        if status is None:
            return TxStatus.UNKNOWN

        if status.err is not None:
            instruction = self._instructions.pop(tx_id, None)
            code = custom_error_code(status.err)
            if code is not None:
                raise TransitionRejected(rejection_code(instruction, code), tx_id=tx_id)
            raise TransitionRejected("transaction_failed", f"Transaction failed: {status.err}", tx_id=tx_id)

        reached = confirmation_level(status.confirmation_status)
        if reached is None:
            return TxStatus.PENDING
        if COMMITMENT_LEVELS.index(reached) >= COMMITMENT_LEVELS.index(self.commitment):
            self._instructions.pop(tx_id, None)
            return TxStatus.FINALIZED
        return TxStatus.PENDING

    def ping(self) -> bool:
        healthy = self.client.is_connected()
        if not healthy:
            logger.warning(f"Ledger health check failed for {self.rpc_url}")
        return bool(healthy)
