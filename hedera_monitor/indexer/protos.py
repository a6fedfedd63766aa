"""
Hedera Envelope Protobuf Messages

Message classes for the three envelope layers and the transfer body,
registered in a private descriptor pool at import time. Only the fields the
monitor reads are declared; everything else on the wire is kept as unknown
fields and ignored.

Field numbers follow the Hedera HAPI definitions:
    Transaction        body=1 (deprecated), bodyBytes=4, signedTransactionBytes=5
    SignedTransaction  bodyBytes=1
    TransactionBody    transactionID=1, memo=6, cryptoTransfer=14,
                       ethereumTransaction=50
    AccountID          shardNum=1, realmNum=2, accountNum=3 | alias=4
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory


PACKAGE = "hedera_monitor.proto"

_F = descriptor_pb2.FieldDescriptorProto


def _field(message, name, number, field_type, type_name=None, repeated=False, oneof_index=None):
    f = message.field.add()
    f.name = name
    f.number = number
    f.type = field_type
    f.label = _F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL
    if type_name:
        f.type_name = f".{PACKAGE}.{type_name}"
    if oneof_index is not None:
        f.oneof_index = oneof_index
    return f


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "hedera_monitor/envelope.proto"
    file_proto.package = PACKAGE
    file_proto.syntax = "proto3"

    m = file_proto.message_type.add(name="Timestamp")
    _field(m, "seconds", 1, _F.TYPE_INT64)
    _field(m, "nanos", 2, _F.TYPE_INT32)

    m = file_proto.message_type.add(name="AccountID")
    m.oneof_decl.add(name="account")
    _field(m, "shard_num", 1, _F.TYPE_INT64)
    _field(m, "realm_num", 2, _F.TYPE_INT64)
    _field(m, "account_num", 3, _F.TYPE_INT64, oneof_index=0)
    _field(m, "alias", 4, _F.TYPE_BYTES, oneof_index=0)

    m = file_proto.message_type.add(name="TransactionID")
    _field(m, "transaction_valid_start", 1, _F.TYPE_MESSAGE, "Timestamp")
    _field(m, "account_id", 2, _F.TYPE_MESSAGE, "AccountID")
    _field(m, "scheduled", 3, _F.TYPE_BOOL)
    _field(m, "nonce", 4, _F.TYPE_INT32)

    m = file_proto.message_type.add(name="AccountAmount")
    _field(m, "account_id", 1, _F.TYPE_MESSAGE, "AccountID")
    _field(m, "amount", 2, _F.TYPE_SINT64)
    _field(m, "is_approval", 3, _F.TYPE_BOOL)

    m = file_proto.message_type.add(name="TransferList")
    _field(m, "account_amounts", 1, _F.TYPE_MESSAGE, "AccountAmount", repeated=True)

    m = file_proto.message_type.add(name="CryptoTransferTransactionBody")
    _field(m, "transfers", 1, _F.TYPE_MESSAGE, "TransferList")

    m = file_proto.message_type.add(name="EthereumTransactionBody")
    _field(m, "ethereum_data", 1, _F.TYPE_BYTES)
    _field(m, "max_gas_allowance", 3, _F.TYPE_INT64)

    m = file_proto.message_type.add(name="TransactionBody")
    m.oneof_decl.add(name="data")
    _field(m, "transaction_id", 1, _F.TYPE_MESSAGE, "TransactionID")
    _field(m, "node_account_id", 2, _F.TYPE_MESSAGE, "AccountID")
    _field(m, "transaction_fee", 3, _F.TYPE_UINT64)
    _field(m, "generate_record", 5, _F.TYPE_BOOL)
    _field(m, "memo", 6, _F.TYPE_STRING)
    _field(m, "crypto_transfer", 14, _F.TYPE_MESSAGE, "CryptoTransferTransactionBody", oneof_index=0)
    _field(m, "ethereum_transaction", 50, _F.TYPE_MESSAGE, "EthereumTransactionBody", oneof_index=0)

    m = file_proto.message_type.add(name="SignedTransaction")
    _field(m, "body_bytes", 1, _F.TYPE_BYTES)

    m = file_proto.message_type.add(name="Transaction")
    _field(m, "body", 1, _F.TYPE_MESSAGE, "TransactionBody")
    _field(m, "body_bytes", 4, _F.TYPE_BYTES)
    _field(m, "signed_transaction_bytes", 5, _F.TYPE_BYTES)

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


Timestamp = _message_class("Timestamp")
AccountID = _message_class("AccountID")
TransactionID = _message_class("TransactionID")
AccountAmount = _message_class("AccountAmount")
TransferList = _message_class("TransferList")
CryptoTransferTransactionBody = _message_class("CryptoTransferTransactionBody")
EthereumTransactionBody = _message_class("EthereumTransactionBody")
TransactionBody = _message_class("TransactionBody")
SignedTransaction = _message_class("SignedTransaction")
Transaction = _message_class("Transaction")

__all__ = [
    "Timestamp",
    "AccountID",
    "TransactionID",
    "AccountAmount",
    "TransferList",
    "CryptoTransferTransactionBody",
    "EthereumTransactionBody",
    "TransactionBody",
    "SignedTransaction",
    "Transaction",
]
