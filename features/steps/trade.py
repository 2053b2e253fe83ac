import typing

from behave import given, use_step_matcher, when

from aptos_defi_sdk.trade_analyzer import TransactionInfo

# Use regular expressions
use_step_matcher("re0")


@given(r"^a swap of (?P<amount_in>[0-9]+) (?P<from_token>\S+) for (?P<amount_out>[0-9]+) (?P<to_token>\S+)$")
def given_swap(
    context: typing.Any, amount_in: str, from_token: str, amount_out: str, to_token: str
):
    context.input = TransactionInfo(
        {
            "type": "user_transaction",
            "version": "1",
            "hash": "0x1",
            "success": True,
            "sender": "0x1",
            "payload": {"function": "0x1::router::swap", "arguments": []},
            "events": [
                {
                    "guid": {"creation_number": "0", "account_address": "0x1"},
                    "type": "0x1::router::SwapEvent",
                    "data": {
                        "amount_in": amount_in,
                        "from_token": from_token,
                        "amount_out": amount_out,
                        "to_token": to_token,
                    },
                }
            ],
        }
    )


@when(r"^I classify the transaction$")
def when_classify(context: typing.Any):
    context.output = context.input.get_direction()


@when(r"^I read the received amount$")
def when_received(context: typing.Any):
    context.output = context.input.get_received_token()[1]
