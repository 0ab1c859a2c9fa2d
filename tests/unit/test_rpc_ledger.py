"""
Unit tests for RpcLedgerClient.
Tests: account decoding, signed sends, status mapping, program error mapping,
       transport error mapping, Retry-After parsing, keypair loading
"""
import json
from datetime import datetime, timezone

import httpx
import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.keypair import Keypair
from solders.rpc.errors import NodeUnhealthyMessage, SendTransactionPreflightFailureMessage
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import (
    InstructionErrorCustom,
    TransactionConfirmationStatus,
    TransactionErrorInstructionError,
)

from gateway.ledger_client import (
    LedgerError,
    TransitionRequest,
    TransitionRejected,
    Unconfirmed,
    Throttled,
    TxStatus,
)
from gateway.rpc_ledger import RpcLedgerClient, load_keypair, parse_retry_after

RPC_URL = "http://ledger.test:8899"


@pytest.fixture
def rpc(mocker):
    return mocker.MagicMock()


@pytest.fixture
def payer():
    return Keypair()


@pytest.fixture
def client(rpc, deriver, payer):
    return RpcLedgerClient(
        RPC_URL,
        deriver.program_id,
        payer=payer,
        client=rpc,
        max_attempts=2,
        backoff_base=0.0,
        jitter=0.0,
        sleep=lambda seconds: None,
    )


def join_request(deriver, player, room_id=1):
    return TransitionRequest(
        "join_room",
        {"room": deriver.room_address(room_id)},
        {"room_id": room_id, "player": player},
    )


def transport_failure(cause):
    error = SolanaRpcException(cause, Client.get_account_info, None, "request")
    error.__cause__ = cause
    return error


def http_failure(status, headers=None):
    request = httpx.Request("POST", RPC_URL)
    response = httpx.Response(status, headers=headers or {}, request=request)
    return transport_failure(httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response))


def preflight_failure(mocker, err):
    error = mocker.MagicMock(spec=SendTransactionPreflightFailureMessage)
    error.message = "Transaction simulation failed"
    error.data.err = err
    return RPCException(error)


def custom_error(code, index=0):
    return TransactionErrorInstructionError(index, InstructionErrorCustom(code))


def signature_status(mocker, confirmation_status, err=None):
    status = mocker.MagicMock()
    status.err = err
    status.confirmation_status = confirmation_status
    return status


def ready_to_send(rpc, mocker, signature=None):
    rpc.get_latest_blockhash.return_value.value.blockhash = Hash.default()
    rpc.send_raw_transaction.return_value = mocker.MagicMock(value=signature or Signature.default())


class TestRead:

    def test_missing_account(self, client, rpc, deriver):
        rpc.get_account_info.return_value.value = None
        assert client.read(deriver.room_address(1)) is None

    def test_decoded_room(self, client, rpc, deriver, alice, bob, room_account):
        resp = rpc.get_account_info.return_value
        resp.value.owner = deriver.program
        resp.value.data = room_account(7, alice, [alice, bob], state=1, staking_amount=500)
        resp.context.slot = 42

        address = deriver.room_address(7)
        account = client.read(address)

        assert account.slot == 42
        assert account.address == address
        assert account.data["room_id"] == 7
        assert account.data["players"] == [alice, bob]
        assert account.data["state"] == "full"
        assert account.data["staking_amount"] == 500
        pubkey = rpc.get_account_info.call_args[0][0]
        assert str(pubkey) == address
        assert rpc.get_account_info.call_args.kwargs["commitment"] == "finalized"

    def test_foreign_owner(self, client, rpc, deriver, alice, room_account):
        resp = rpc.get_account_info.return_value
        resp.value.owner = Keypair().pubkey()
        resp.value.data = room_account(1, alice, [alice])

        with pytest.raises(LedgerError):
            client.read(deriver.room_address(1))

    def test_invalid_address(self, client):
        with pytest.raises(ValueError):
            client.read("not-an-address")


class TestSend:

    def test_signed_by_fee_payer(self, client, rpc, deriver, payer, alice, mocker):
        signature = Keypair().sign_message(b"join")
        ready_to_send(rpc, mocker, signature)

        tx_id = client._send(join_request(deriver, alice), [alice])

        assert tx_id == str(signature)
        raw = rpc.send_raw_transaction.call_args[0][0]
        transaction = Transaction.from_bytes(raw)
        assert transaction.message.account_keys[0] == payer.pubkey()
        assert deriver.program in transaction.message.account_keys
        opts = rpc.send_raw_transaction.call_args.kwargs["opts"]
        assert opts.skip_confirmation is True
        assert opts.preflight_commitment == "finalized"

    def test_submit_and_finalize(self, client, rpc, deriver, alice, mocker):
        ready_to_send(rpc, mocker)
        rpc.get_signature_statuses.return_value.value = [
            signature_status(mocker, TransactionConfirmationStatus.Finalized)
        ]

        tx_id = client.submit(join_request(deriver, alice), [alice])

        assert tx_id == str(Signature.default())
        queried = rpc.get_signature_statuses.call_args[0][0]
        assert queried == [Signature.default()]

    def test_program_rejection(self, client, rpc, deriver, alice, mocker):
        rpc.get_latest_blockhash.return_value.value.blockhash = Hash.default()
        rpc.send_raw_transaction.side_effect = preflight_failure(mocker, custom_error(6004))

        with pytest.raises(TransitionRejected) as exc:
            client._send(join_request(deriver, alice), [alice])
        assert exc.value.code == "room_not_open"

    def test_stale_counter_from_taken_room(self, client, rpc, deriver, alice, mocker):
        """The room account already existing means another creation won the id."""
        rpc.get_latest_blockhash.return_value.value.blockhash = Hash.default()
        rpc.send_raw_transaction.side_effect = preflight_failure(mocker, custom_error(0))
        request = TransitionRequest(
            "create_room",
            {"registry": deriver.registry_address(), "room": deriver.room_address(1)},
            {
                "room_id": 1,
                "expected_total_rooms": 0,
                "creator": alice,
                "staking_amount": 0,
                "capacity": 2,
                "creator_joins": True,
                "creation_time": 1700000000,
            },
        )

        with pytest.raises(TransitionRejected) as exc:
            client._send(request, [alice])
        assert exc.value.code == "stale_counter"

    def test_preflight_without_program_error(self, client, rpc, deriver, alice, mocker):
        rpc.get_latest_blockhash.return_value.value.blockhash = Hash.default()
        rpc.send_raw_transaction.side_effect = preflight_failure(mocker, "BlockhashNotFound")

        with pytest.raises(TransitionRejected) as exc:
            client._send(join_request(deriver, alice), [alice])
        assert exc.value.code == "preflight_failed"


class TestStatus:

    @pytest.mark.parametrize("reached,expected", [
        (TransactionConfirmationStatus.Processed, TxStatus.PENDING),
        (TransactionConfirmationStatus.Confirmed, TxStatus.PENDING),
        (TransactionConfirmationStatus.Finalized, TxStatus.FINALIZED),
        (None, TxStatus.PENDING),
    ])
    def test_confirmation_levels(self, client, rpc, mocker, reached, expected):
        rpc.get_signature_statuses.return_value.value = [signature_status(mocker, reached)]
        assert client._status(str(Signature.default())) == expected

    def test_confirmed_commitment(self, rpc, deriver, payer, mocker):
        client = RpcLedgerClient(RPC_URL, deriver.program_id, payer=payer, commitment="confirmed", client=rpc)
        rpc.get_signature_statuses.return_value.value = [
            signature_status(mocker, TransactionConfirmationStatus.Confirmed)
        ]
        assert client._status(str(Signature.default())) == TxStatus.FINALIZED

    def test_unknown_signature(self, client, rpc):
        rpc.get_signature_statuses.return_value.value = [None]
        assert client._status(str(Signature.default())) == TxStatus.UNKNOWN

    def test_failed_on_chain(self, client, rpc, mocker):
        tx_id = str(Signature.default())
        rpc.get_signature_statuses.return_value.value = [
            signature_status(mocker, TransactionConfirmationStatus.Finalized, err=custom_error(6006))
        ]
        with pytest.raises(TransitionRejected) as exc:
            client._status(tx_id)
        assert exc.value.code == "already_resolved"
        assert exc.value.tx_id == tx_id

    def test_failed_without_program_error(self, client, rpc, mocker):
        rpc.get_signature_statuses.return_value.value = [
            signature_status(mocker, TransactionConfirmationStatus.Finalized, err="InsufficientFundsForFee")
        ]
        with pytest.raises(TransitionRejected) as exc:
            client._status(str(Signature.default()))
        assert exc.value.code == "transaction_failed"

    def test_framework_error_uses_sent_instruction(self, client, rpc, deriver, alice, mocker):
        ready_to_send(rpc, mocker)
        tx_id = client._send(join_request(deriver, alice), [alice])
        rpc.get_signature_statuses.return_value.value = [
            signature_status(mocker, TransactionConfirmationStatus.Finalized, err=custom_error(3012))
        ]
        with pytest.raises(TransitionRejected) as exc:
            client._status(tx_id)
        assert exc.value.code == "room_not_found"

    def test_invalid_commitment(self, deriver, payer, rpc):
        with pytest.raises(ValueError):
            RpcLedgerClient(RPC_URL, deriver.program_id, payer=payer, commitment="eventually", client=rpc)


class TestTransportErrors:

    def test_connection_refused_is_unsent(self, client, rpc, deriver, alice, mocker):
        ready_to_send(rpc, mocker)
        rpc.send_raw_transaction.side_effect = transport_failure(httpx.ConnectError("refused"))
        with pytest.raises(Unconfirmed) as exc:
            client._send(join_request(deriver, alice), [alice])
        assert exc.value.submitted is False

    def test_read_timeout_on_send_may_have_committed(self, client, rpc, deriver, alice, mocker):
        ready_to_send(rpc, mocker)
        rpc.send_raw_transaction.side_effect = transport_failure(httpx.ReadTimeout("slow"))
        with pytest.raises(Unconfirmed) as exc:
            client._send(join_request(deriver, alice), [alice])
        assert exc.value.submitted is True

    def test_read_timeout_on_read_is_unsent(self, client, rpc, deriver):
        rpc.get_account_info.side_effect = transport_failure(httpx.ReadTimeout("slow"))
        with pytest.raises(Unconfirmed) as exc:
            client.read(deriver.room_address(1))
        assert exc.value.submitted is False

    def test_http_429(self, client, rpc, deriver):
        rpc.get_account_info.side_effect = http_failure(429, {"Retry-After": "3"})
        with pytest.raises(Throttled) as exc:
            client.read(deriver.room_address(1))
        assert exc.value.retry_after == 3.0

    def test_http_429_with_date(self, client, rpc, deriver):
        rpc.get_account_info.side_effect = http_failure(429, {"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"})
        with pytest.raises(Throttled) as exc:
            client.read(deriver.room_address(1))
        assert isinstance(exc.value.retry_after, float)
        assert exc.value.retry_after >= 0

    def test_http_429_with_garbage(self, client, rpc, deriver):
        rpc.get_account_info.side_effect = http_failure(429, {"Retry-After": "soon"})
        with pytest.raises(Throttled) as exc:
            client.read(deriver.room_address(1))
        assert exc.value.retry_after is None

    def test_node_unhealthy(self, client, rpc, deriver, mocker):
        error = mocker.MagicMock(spec=NodeUnhealthyMessage)
        error.message = "Node is behind by 42 slots"
        rpc.get_account_info.side_effect = RPCException(error)
        with pytest.raises(Throttled):
            client.read(deriver.room_address(1))

    def test_server_error(self, client, rpc, deriver, alice, mocker):
        ready_to_send(rpc, mocker)
        rpc.send_raw_transaction.side_effect = http_failure(502)
        with pytest.raises(Unconfirmed) as exc:
            client._send(join_request(deriver, alice), [alice])
        assert exc.value.submitted is True

    def test_client_error(self, client, rpc, deriver):
        rpc.get_account_info.side_effect = http_failure(403)
        with pytest.raises(LedgerError) as exc:
            client.read(deriver.room_address(1))
        assert not isinstance(exc.value, (Unconfirmed, Throttled))

    def test_generic_rpc_error(self, client, rpc, deriver, mocker):
        error = mocker.MagicMock()
        error.message = "Invalid request"
        rpc.get_account_info.side_effect = RPCException(error)
        with pytest.raises(LedgerError) as exc:
            client.read(deriver.room_address(1))
        assert type(exc.value) is LedgerError

    def test_submit_retries_throttle(self, client, rpc, deriver, alice, mocker):
        rpc.get_latest_blockhash.return_value.value.blockhash = Hash.default()
        rpc.send_raw_transaction.side_effect = [
            http_failure(429),
            mocker.MagicMock(value=Signature.default()),
        ]
        rpc.get_signature_statuses.return_value.value = [
            signature_status(mocker, TransactionConfirmationStatus.Finalized)
        ]
        assert client.submit(join_request(deriver, alice), [alice]) == str(Signature.default())
        assert rpc.send_raw_transaction.call_count == 2


class TestRetryAfter:

    NOW = datetime(2026, 10, 21, 7, 27, 30, tzinfo=timezone.utc)

    def test_seconds(self):
        assert parse_retry_after("12") == 12.0
        assert parse_retry_after("-4") == 0.0

    def test_http_date(self):
        assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT", now=self.NOW) == 30.0

    def test_past_http_date(self):
        assert parse_retry_after("Wed, 21 Oct 2026 07:00:00 GMT", now=self.NOW) == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon", "Wed, 99 Oct 2026"])
    def test_unusable(self, value):
        assert parse_retry_after(value, now=self.NOW) is None


class TestKeypair:

    def test_generated_when_unset(self):
        assert isinstance(load_keypair(""), Keypair)

    def test_base58_secret(self, payer):
        assert load_keypair(str(payer)).pubkey() == payer.pubkey()

    def test_json_file(self, payer, tmp_path):
        path = tmp_path / "payer.json"
        path.write_text(json.dumps(list(bytes(payer))))
        assert load_keypair(str(path)).pubkey() == payer.pubkey()

    def test_authority_is_payer(self, client, payer):
        assert client.authority == str(payer.pubkey())


class TestPing:

    def test_healthy(self, client, rpc):
        rpc.is_connected.return_value = True
        assert client.ping() is True

    def test_unhealthy(self, client, rpc):
        rpc.is_connected.return_value = False
        assert client.ping() is False
