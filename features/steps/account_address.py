from behave import then, use_step_matcher, when

from aptos_defi_sdk.account_address import AccountAddress

# Use regular expressions
use_step_matcher("re0")


@when("^I parse the account address$")
def when_parse_account_address(context):
    try:
        context.output = AccountAddress.from_str(context.input)
    except Exception as e:
        context.output = e


@when("^I convert the address to a string$")
def when_account_address_to_string(context):
    context.output = str(context.input)


@then("^I should fail to parse the account address$")
def then_fail_account_address(context):
    assert isinstance(context.output, Exception)
