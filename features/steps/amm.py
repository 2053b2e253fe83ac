import typing

from behave import given, use_step_matcher, when

from aptos_defi_sdk.dex.amm import amm_output, apply_slippage, feeless_output

# Use regular expressions
use_step_matcher("re0")


@given(r"^a pool with reserves (?P<reserve_in>[0-9]+) and (?P<reserve_out>[0-9]+)$")
def given_pool(context: typing.Any, reserve_in: str, reserve_out: str):
    context.reserves = (int(reserve_in), int(reserve_out))


@when(r"^I quote an exact input of (?P<amount_in>[0-9]+)(?P<feeless> without fee)?$")
def when_quote(context: typing.Any, amount_in: str, feeless: typing.Optional[str]):
    quote = feeless_output if feeless else amm_output
    context.output = quote(int(amount_in), *context.reserves)


@when(r"^I apply a slippage of (?P<slippage>[0-9.]+)$")
def when_slippage(context: typing.Any, slippage: str):
    context.output = apply_slippage(context.input, float(slippage))
