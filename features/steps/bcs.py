import typing

from behave import then, use_step_matcher, when

from aptos_defi_sdk.account_address import AccountAddress
from aptos_defi_sdk.bcs import Deserializer, Serializer

# Use regular expressions
use_step_matcher("re0")

ENCODERS = {
    "bool": Serializer.bool,
    "u8": Serializer.u8,
    "u16": Serializer.u16,
    "u32": Serializer.u32,
    "u64": Serializer.u64,
    "u128": Serializer.u128,
    "u256": Serializer.u256,
    "uleb128": Serializer.uleb128,
    "address": Serializer.struct,
    "bytes": Serializer.to_bytes,
    "string": Serializer.str,
}

DECODERS = {
    "bool": Deserializer.bool,
    "u8": Deserializer.u8,
    "u16": Deserializer.u16,
    "u32": Deserializer.u32,
    "u64": Deserializer.u64,
    "u128": Deserializer.u128,
    "u256": Deserializer.u256,
    "uleb128": Deserializer.uleb128,
    "address": AccountAddress.deserialize,
    "bytes": Deserializer.to_bytes,
    "string": Deserializer.str,
}


@when(r"^I serialize as (?P<input_type>[a-zA-Z0-9]+)$")
def when_serialize(context: typing.Any, input_type: str):
    ser = Serializer()
    ENCODERS[input_type](ser, context.input)
    context.output = ser.output()


@when(r"^I deserialize as (?P<input_type>[a-zA-Z0-9]+)$")
def when_deserialize(context: typing.Any, input_type: str):
    des = Deserializer(context.input)
    try:
        context.output = DECODERS[input_type](des)
    except Exception as e:
        context.output = e


@when(r"^I serialize as sequence of (?P<input_type>[a-zA-Z0-9]+)$")
def when_serialize_sequence(context: typing.Any, input_type: str):
    ser = Serializer()
    seq_ser = Serializer.sequence_serializer(ENCODERS[input_type])
    seq_ser(ser, context.input)
    context.output = ser.output()


@when(r"^I deserialize as sequence of (?P<input_type>[a-zA-Z0-9]+)$")
def when_deserialize_sequence(context: typing.Any, input_type: str):
    des = Deserializer(context.input)
    context.output = des.sequence(DECODERS[input_type])


@then(r"^the deserialization should fail$")
def then_fail_deserialization(context: typing.Any):
    assert isinstance(context.output, Exception)
